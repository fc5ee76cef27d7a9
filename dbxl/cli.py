# dbxl/cli.py
"""
Command line entry point::

    dbxl -config export.json
    dbxl -generate-key
    dbxl -encrypt-password [password]

Exit codes: 0 on success or when no config is given (usage is printed), 1 on failure.
"""

import argparse
import getpass
import logging
import sys
from typing import List, Optional

from . import config
from .exporter import export
from .logging_utils import cleanup_old_logs, errors_logged, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='dbxl', description='Export SQL query results to Excel workbooks')
    parser.add_argument('-config', '--config', dest='config', metavar='PATH',
                        help='Export configuration document (.json, .yml or .yaml)')
    parser.add_argument('-generate-key', '--generate-key', dest='generate_key', action='store_true',
                        help='Print a new encryption key for encryptedPassword values')
    parser.add_argument('-encrypt-password', '--encrypt-password', dest='encrypt_password',
                        nargs='?', const='', default=None, metavar='PASSWORD',
                        help='Print the encrypted form of PASSWORD (prompts when omitted)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_key:
        key = config.generate_encryption_key()
        print(key)
        print(f"Store the key in {config.KEY_ENV_VAR} or in the system keyring "
              f"(service '{config.KEYRING_SERVICE}', entry 'encryption_key')", file=sys.stderr)
        return 0

    if args.encrypt_password is not None:
        password = args.encrypt_password or getpass.getpass('Enter password to encrypt: ')
        try:
            print(config.encrypt_password(password))
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    if not args.config:
        parser.print_usage()
        return 0

    try:
        job = config.load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    config.apply_settings(job.settings)
    setup_logging()
    logger.info(f"Reading export config from {args.config}")
    try:
        paths = export(job)
    except Exception as e:
        logger.error(f"An error occurred while exporting data to Excel: {e}")
        return 1
    finally:
        cleanup_old_logs()

    for path in paths:
        logger.info(f"Exported data to {path}")
    error_log = errors_logged()
    if error_log:
        print(f"Export finished with errors, see {error_log}", file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
