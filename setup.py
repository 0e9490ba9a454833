from setuptools import setup
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file.
with open(path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='pgpstream',
    version='0.1.0',
    description='Streaming decryption and verification of OpenPGP messages.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='The pgpstream Contributors',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Information Technology',
        'Intended Audience :: System Administrators',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
        'Programming Language :: Python :: 3',
    ],
    keywords='OpenPGP PGP GnuPG',

    packages=['pgpstream'],
    python_requires='>=3.8',

    install_requires=["cryptography>=3.1"],
    extras_require={"test": ["pytest"]},
)
