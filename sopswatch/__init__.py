"""
Sopswatch keeps SOPS encrypted secrets encrypted at rest while you edit them.

It watches a directory for SOPS managed files. When one is opened it is
decrypted in place, and when it is closed it is encrypted again. A file that
was closed without changes gets its original ciphertext back, so unchanged
secrets don't produce a diff. The sops command performs all encryption and
decryption.

Files are managed when their names end in one of:

\b
    * '.sops.yaml', '.sops.json', '.enc.yaml', '.enc.json' or '.sops'.

Or when their contents hold a SOPS metadata block and 'ENC[' values.

Watch the current directory:

\b
    $ sopswatch watch

List the managed files and whether they are currently encrypted:

\b
    $ sopswatch ls

Encrypt every managed file that has been left as plaintext:

\b
    $ sopswatch encrypt
"""

__version__ = '1.0.0'
