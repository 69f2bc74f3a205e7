"""
Console output helpers shared by the request handler and the pipeline modules
"""
import sys


def safe_print(message):
    """Print message safely handling encoding issues on Windows"""
    try:
        print(message, flush=True)
    except UnicodeEncodeError:
        # Fallback: encode to ASCII, replacing problematic characters
        safe_message = message.encode('ascii', 'replace').decode('ascii')
        print(safe_message, flush=True)


def log_info(message):
    safe_print(f"[INFO] {message}")


def log_warning(message):
    safe_print(f"[WARNING] {message}")


def log_error(message):
    # Errors go to stderr so serverless log viewers flag them
    try:
        print(f"[ERROR] {message}", file=sys.stderr, flush=True)
    except UnicodeEncodeError:
        print(f"[ERROR] {message}".encode('ascii', 'replace').decode('ascii'), file=sys.stderr, flush=True)
