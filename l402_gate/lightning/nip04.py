"""
NIP-04 encryption for Nostr Wallet Connect messages.

ECDH over secp256k1 (coincurve) gives a shared x-coordinate that keys
AES-256-CBC (PyCryptodome). Ciphertext travels as "<b64 ct>?iv=<b64 iv>".
"""

from __future__ import annotations

import os
from base64 import b64decode, b64encode

from coincurve import PrivateKey, PublicKey
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad

_IV_MARKER = "?iv="


def xonly_public_key(private_key_hex: str) -> str:
    """Nostr public key (x-only, hex) for a private key."""
    compressed = PrivateKey(bytes.fromhex(private_key_hex)).public_key.format(compressed=True)
    return compressed[1:].hex()


class Nip04Cipher:
    """Encrypts/decrypts between one local key and one remote x-only pubkey."""

    def __init__(self, private_key_hex: str, peer_pubkey_hex: str):
        secret = PrivateKey(bytes.fromhex(private_key_hex)).secret
        # x-only keys are taken to have even y (02 prefix)
        peer = PublicKey(b"\x02" + bytes.fromhex(peer_pubkey_hex))
        self._key = peer.multiply(secret).format(compressed=True)[1:]

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(16)
        body = AES.new(self._key, AES.MODE_CBC, iv).encrypt(
            pad(plaintext.encode("utf-8"), AES.block_size)
        )
        return f"{b64encode(body).decode('ascii')}{_IV_MARKER}{b64encode(iv).decode('ascii')}"

    def decrypt(self, payload: str) -> str:
        body_b64, sep, iv_b64 = payload.partition(_IV_MARKER)
        if not sep:
            raise ValueError("Invalid NIP-04 ciphertext format (expected '...?iv=...')")
        cipher = AES.new(self._key, AES.MODE_CBC, b64decode(iv_b64))
        return unpad(cipher.decrypt(b64decode(body_b64)), AES.block_size).decode("utf-8")
