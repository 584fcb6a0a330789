#!/usr/bin/env python3
"""Print a new master key or hashing salt for envcrypt configuration."""
import argparse
import logging
import sys

from envcrypt.cipher_util import CipherUtil
from envcrypt.config import env_name
from envcrypt.errors import UnsupportedAlgorithm
from envcrypt.logging.json_logger import configure_json_logging

logger = logging.getLogger('envcrypt.scripts.generate_key')


def main(argv=None):
    p = argparse.ArgumentParser(description=__doc__)
    p.add_argument('--verbose', action='store_true', help='Emit JSON debug logs on stderr')
    sub = p.add_subparsers(dest='command', required=True)

    key = sub.add_parser('key', help='Generate printable key material (masterKey)')
    key.add_argument('--algorithm', default='AES', help='Key algorithm (default: AES)')
    key.add_argument('--env', action='store_true', help='Print as an environment variable assignment')

    salt = sub.add_parser('salt', help='Generate a 16-byte hashing salt')
    salt.add_argument('--env', action='store_true', help='Print as an environment variable assignment')

    args = p.parse_args(argv)
    if args.verbose:
        configure_json_logging(level=logging.DEBUG, logger_name='envcrypt')

    if args.command == 'key':
        try:
            value = CipherUtil.generate_new_key(args.algorithm)
        except UnsupportedAlgorithm as e:
            logger.error("Key generation failed: %s", e)
            print(str(e), file=sys.stderr)
            return 2
        name = env_name('masterKey')
        logger.debug("Generated key material", extra={"algorithm": args.algorithm})
    else:
        value = CipherUtil.generate_new_salt()
        name = 'ENVCRYPT_SALT'
        logger.debug("Generated salt")

    print(f"{name}={value}" if args.env else value)
    return 0


if __name__ == '__main__':
    sys.exit(main())
