"""Streaming decryption and signature verification of OpenPGP messages."""
