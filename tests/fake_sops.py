"""
A stand-in for the sops binary, used by the tests.

Understands 'fake_sops.py -d <path>' and 'fake_sops.py -e -i <path>' for a
toy format, where each 'key: value' line is "encrypted" by reversing the
value. Behaviour can be changed through the environment:

    FAKE_SOPS_LOG        append '<verb> <path>' to this file for each call
    FAKE_SOPS_FAIL       'decrypt' or 'encrypt', the verb that should fail
    FAKE_SOPS_FAIL_PATH  only fail for paths containing this string
    FAKE_SOPS_CORRUPT    write a partial file before failing to encrypt
    FAKE_SOPS_SLEEP      seconds to wait before doing anything
"""

import os
import re
import sys
import time

ENCRYPTED = re.compile(r'ENC\[AES256_GCM,data:(.*),type:str\]')
METADATA = 'sops:\n    version: 3.8.1\n'


def encrypt(text: str) -> str:
    lines = []
    for line in text.splitlines():
        key, separator, value = line.partition(': ')
        if separator:
            line = f'{key}: ENC[AES256_GCM,data:{value[::-1]},type:str]'
        lines.append(line)
    return '\n'.join(lines) + '\n' + METADATA


def decrypt(text: str) -> str:
    if not re.search(r'^sops:', text, flags=re.MULTILINE):
        raise ValueError('sops metadata not found')
    body = re.split(r'^sops:', text, flags=re.MULTILINE)[0]
    return ENCRYPTED.sub(lambda match: match.group(1)[::-1], body)


def main(arguments) -> int:
    verb = 'decrypt' if arguments[0] == '-d' else 'encrypt'
    path = arguments[-1]

    if os.environ.get('FAKE_SOPS_LOG'):
        with open(os.environ['FAKE_SOPS_LOG'], 'a') as log:
            log.write(f'{verb} {path}\n')

    time.sleep(float(os.environ.get('FAKE_SOPS_SLEEP', '0')))

    if os.environ.get('FAKE_SOPS_FAIL') == verb and os.environ.get('FAKE_SOPS_FAIL_PATH', '') in path:
        if verb == 'encrypt' and os.environ.get('FAKE_SOPS_CORRUPT'):
            with open(path, 'w') as stream:
                stream.write('key: ENC[AES256_GCM,da')
        sys.stderr.write('error: no matching creation rule found\n')
        return 1

    with open(path) as stream:
        text = stream.read()

    if verb == 'decrypt':
        try:
            sys.stdout.write(decrypt(text))
        except ValueError as error:
            sys.stderr.write(f'error: {error}\n')
            return 1
        return 0

    if 'ENC[' in text:
        sys.stderr.write('error: the file is already encrypted\n')
        return 1
    with open(path, 'w') as stream:
        stream.write(encrypt(text))
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
