import sys
import os
from getpass import getpass
from pgpstream.core import Context, ValidationPolicy
from pgpstream.decrypt import Decryptor
from pgpstream.verify import Validation

if len(sys.argv) != 4:
    sys.stderr.write("Usage: {} PUBRING SECRING MESSAGE\n".format(sys.argv[0]))
    sys.exit(2)

passphrase = getpass("Enter passphrase to unlock the secret key: ")
ctx = Context(public_keyring=sys.argv[1],
              secret_keyring=sys.argv[2],
              passphrase=passphrase.encode(),
              policy=ValidationPolicy.Optional)

with Decryptor(ctx) as d, open(sys.argv[3], "rb") as f:
    plaintext = d.decrypt_and_verify(f)
    while True:
        chunk = plaintext.read(8192)
        if not chunk:
            break
        os.write(sys.stdout.fileno(), chunk)
    outcome = plaintext.outcome
    sys.stderr.write("{}\n".format(outcome))

assert outcome.status in (Validation.Verified, Validation.Unsigned)
