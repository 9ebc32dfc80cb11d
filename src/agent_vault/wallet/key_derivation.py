"""Deterministic key derivation for every supported chain.

Turns a mnemonic, seed phrase or raw private key into a chain-native
keypair and address:

- ckETH and ICP use secp256k1 with BIP-32 derivation (``eth-account``).
  The ckETH address is the EIP-55 checksummed Ethereum address; the ICP
  address is the textual self-authenticating principal of the DER-encoded
  public key.
- Solana and Polkadot use ed25519 keys derived with SLIP-0010 (hardened
  indexes only). Solana addresses are base58 public keys, Polkadot
  addresses are SS58 (network prefix 0).
- Arweave has no HD path. A 4096-bit RSA keypair is generated from a
  deterministic byte stream seeded by the wallet material, and the address
  is ``base64url(sha256(n))``. Private keys are carried as JWK JSON.

The same (chain, material, path) triple always yields the same address.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import zlib
from dataclasses import dataclass
from typing import Any

import base58
from Crypto.Hash import SHAKE256
from Crypto.PublicKey import RSA
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account import Account
from eth_account.hdaccount import key_from_seed
from mnemonic import Mnemonic
from nacl.signing import SigningKey

from agent_vault.errors import InvalidMnemonic, KeyDerivationError, UnsupportedChainError
from agent_vault.wallet.chains import CHAINS, Chain, Curve, normalize_chain
from agent_vault.wallet.models import CreationMethod, WalletData

HARDENED_OFFSET = 0x80000000
MNEMONIC_STRENGTHS = (128, 160, 192, 224, 256)
ARWEAVE_KEY_BITS = 4096
SS58_PREFIX_POLKADOT = 0
_SS58_ALLOWED_PREFIXES = (0, 2, 42)

_PATH_SEGMENT_RE = re.compile(r"^(\d+)(['hH]?)$")
_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]+$")

_mnemo = Mnemonic("english")


@dataclass(frozen=True)
class DerivedKey:
    """The result of deriving a wallet key."""

    address: str
    private_key: str
    derivation_path: str | None
    public_key: str


# ---------------------------------------------------------------------------
# Derivation paths
# ---------------------------------------------------------------------------

def parse_derivation_path(path: str) -> list[int]:
    """Parse ``m/44'/60'/0'/0/0`` into child indexes (hardened ones offset).

    Raises :class:`KeyDerivationError` with reason ``invalid_path``.
    """
    if not isinstance(path, str):
        raise KeyDerivationError("invalid_path", f"Derivation path must be a string, got {path!r}")
    parts = path.strip().split("/")
    if not parts or parts[0] != "m":
        raise KeyDerivationError("invalid_path", f"Derivation path must start with 'm': {path!r}")

    indexes: list[int] = []
    for segment in parts[1:]:
        match = _PATH_SEGMENT_RE.match(segment)
        if match is None:
            raise KeyDerivationError("invalid_path", f"Invalid path segment '{segment}' in {path!r}")
        index = int(match.group(1))
        if index >= HARDENED_OFFSET:
            raise KeyDerivationError("invalid_path", f"Path index out of range in {path!r}")
        if match.group(2):
            index += HARDENED_OFFSET
        indexes.append(index)
    return indexes


def build_derivation_path(
    coin_type: int,
    account: int = 0,
    change: int | None = 0,
    address_index: int | None = 0,
    *,
    purpose: int = 44,
    hardened_tail: bool = False,
) -> str:
    """Build a BIP-44 style path.

    ``hardened_tail`` hardens the change and address levels as well, which
    is what ed25519 chains require.
    """
    tail = "'" if hardened_tail else ""
    parts = ["m", f"{purpose}'", f"{coin_type}'", f"{account}'"]
    if change is not None:
        parts.append(f"{change}{tail}")
        if address_index is not None:
            parts.append(f"{address_index}{tail}")
    return "/".join(parts)


def get_default_derivation_path(chain: str | Chain) -> str | None:
    """Return the canonical path for *chain* (``None`` for Arweave)."""
    return CHAINS[normalize_chain(chain)].derivation_path


# ---------------------------------------------------------------------------
# Mnemonics
# ---------------------------------------------------------------------------

def _normalize_phrase(phrase: str) -> str:
    return " ".join(phrase.strip().lower().split())


def validate_seed_phrase(phrase: str) -> bool:
    """Return ``True`` if *phrase* is a valid BIP-39 English mnemonic."""
    if not isinstance(phrase, str) or not phrase.strip():
        return False
    return _mnemo.check(_normalize_phrase(phrase))


def _require_valid_phrase(phrase: str | None) -> str:
    if not phrase or not isinstance(phrase, str):
        raise InvalidMnemonic("A mnemonic phrase is required")
    normalized = _normalize_phrase(phrase)
    words = normalized.split(" ")
    if len(words) not in (12, 15, 18, 21, 24):
        raise InvalidMnemonic(f"Mnemonic must have 12-24 words, got {len(words)}")
    unknown = [w for w in words if w not in _mnemo.wordlist]
    if unknown:
        raise InvalidMnemonic(f"Mnemonic contains {len(unknown)} word(s) outside the BIP-39 list")
    if not _mnemo.check(normalized):
        raise InvalidMnemonic("Mnemonic checksum does not match", reason="bad_checksum")
    return normalized


def generate_mnemonic(strength: int = 128) -> str:
    """Generate a fresh English mnemonic from CSPRNG entropy."""
    if strength not in MNEMONIC_STRENGTHS:
        raise ValueError(f"Mnemonic strength must be one of {MNEMONIC_STRENGTHS}, got {strength}")
    return _mnemo.generate(strength=strength)


def generate_seed_from_mnemonic(phrase: str, passphrase: str = "") -> bytes:
    """Validate *phrase* and return its 64-byte BIP-39 seed."""
    return Mnemonic.to_seed(_require_valid_phrase(phrase), passphrase=passphrase)


# ---------------------------------------------------------------------------
# Curve helpers
# ---------------------------------------------------------------------------

def _slip10_ed25519(seed: bytes, path: str) -> bytes:
    digest = hmac.new(b"ed25519 seed", seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for index in parse_derivation_path(path):
        if index < HARDENED_OFFSET:
            raise KeyDerivationError(
                "invalid_path", f"ed25519 derivation only supports hardened indexes: {path!r}"
            )
        data = b"\x00" + key + index.to_bytes(4, "big")
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key


def _secp256k1_from_seed(seed: bytes, path: str) -> bytes:
    parse_derivation_path(path)
    try:
        return key_from_seed(seed, path)
    except ValueError as exc:
        raise KeyDerivationError("invalid_path", f"Cannot derive {path!r}: {exc}") from exc


def decode_private_key_bytes(value: str, *, allowed_lengths: tuple[int, ...] = (32,)) -> bytes:
    """Decode a hex private key (``0x`` prefix optional)."""
    if not isinstance(value, str) or not _HEX_RE.match(value.strip()):
        raise KeyDerivationError("malformed_key", "Private key must be a hex string")
    raw = value.strip()
    raw = raw[2:] if raw.startswith("0x") else raw
    if len(raw) % 2:
        raise KeyDerivationError("malformed_key", "Private key hex has an odd number of digits")
    key = bytes.fromhex(raw)
    if len(key) not in allowed_lengths:
        raise KeyDerivationError(
            "malformed_key",
            f"Private key must be {' or '.join(str(n) for n in allowed_lengths)} bytes, got {len(key)}",
        )
    return key


def _decode_solana_secret(value: str) -> bytes:
    """Accept hex or base58 (solana-keygen / Phantom) secrets of 32 or 64 bytes."""
    candidate = value.strip() if isinstance(value, str) else ""
    if _HEX_RE.match(candidate):
        secret = decode_private_key_bytes(candidate, allowed_lengths=(32, 64))
    else:
        try:
            secret = base58.b58decode(candidate)
        except ValueError:
            raise KeyDerivationError("malformed_key", "Solana key is neither hex nor base58") from None
        if len(secret) not in (32, 64):
            raise KeyDerivationError("malformed_key", f"Solana key must be 32 or 64 bytes, got {len(secret)}")

    seed = secret[:32]
    if len(secret) == 64:
        expected = bytes(SigningKey(seed).verify_key)
        if expected != secret[32:]:
            raise KeyDerivationError("malformed_key", "Solana keypair public half does not match its seed")
    return seed


def eth_address(key: bytes) -> str:
    return Account.from_key(key).address


def secp256k1_private_key(key: bytes) -> ec.EllipticCurvePrivateKey:
    try:
        return ec.derive_private_key(int.from_bytes(key, "big"), ec.SECP256K1())
    except ValueError as exc:
        raise KeyDerivationError("malformed_key", f"Invalid secp256k1 scalar: {exc}") from exc


def icp_principal(key: bytes) -> str:
    """Textual self-authenticating principal for a secp256k1 private key."""
    der = secp256k1_private_key(key).public_key().public_bytes(
        Encoding.DER, PublicFormat.SubjectPublicKeyInfo
    )
    raw = hashlib.sha224(der).digest() + b"\x02"
    return encode_principal(raw)


def encode_principal(raw: bytes) -> str:
    checksum = zlib.crc32(raw).to_bytes(4, "big")
    text = base64.b32encode(checksum + raw).decode("ascii").lower().rstrip("=")
    return "-".join(text[i:i + 5] for i in range(0, len(text), 5))


def ss58_encode(public_key: bytes, prefix: int = SS58_PREFIX_POLKADOT) -> str:
    payload = bytes([prefix]) + public_key
    checksum = hashlib.blake2b(b"SS58PRE" + payload, digest_size=64).digest()[:2]
    return base58.b58encode(payload + checksum).decode("ascii")


def ss58_decode(address: str) -> tuple[int, bytes]:
    """Return ``(prefix, public_key)`` or raise ``ValueError``."""
    raw = base58.b58decode(address)
    if len(raw) != 35:
        raise ValueError(f"SS58 address must decode to 35 bytes, got {len(raw)}")
    payload, checksum = raw[:33], raw[33:]
    expected = hashlib.blake2b(b"SS58PRE" + payload, digest_size=64).digest()[:2]
    if checksum != expected:
        raise ValueError("SS58 checksum mismatch")
    if payload[0] not in _SS58_ALLOWED_PREFIXES:
        raise ValueError(f"Unexpected SS58 network prefix {payload[0]}")
    return payload[0], payload[1:]


# ---------------------------------------------------------------------------
# Arweave (RSA JWK)
# ---------------------------------------------------------------------------

def _b64url(value: int | bytes) -> str:
    if isinstance(value, int):
        value = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_int(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    return int.from_bytes(base64.urlsafe_b64decode(padded), "big")


def _rsa_from_material(material: bytes) -> RSA.RsaKey:
    stream = SHAKE256.new(b"agent-vault/arweave-rsa/v1" + material)
    return RSA.generate(ARWEAVE_KEY_BITS, randfunc=stream.read, e=65537)


def rsa_to_jwk(key: RSA.RsaKey) -> dict[str, str]:
    p, q, d = key.p, key.q, key.d
    return {
        "kty": "RSA",
        "n": _b64url(key.n),
        "e": _b64url(key.e),
        "d": _b64url(d),
        "p": _b64url(p),
        "q": _b64url(q),
        "dp": _b64url(d % (p - 1)),
        "dq": _b64url(d % (q - 1)),
        "qi": _b64url(pow(q, -1, p)),
    }


def load_arweave_jwk(value: str | dict[str, Any]) -> RSA.RsaKey:
    """Parse a JWK (JSON string or dict) into a private RSA key."""
    try:
        jwk = json.loads(value) if isinstance(value, str) else dict(value)
        if jwk.get("kty") != "RSA":
            raise ValueError("JWK kty must be RSA")
        components = tuple(_b64url_int(jwk[name]) for name in ("n", "e", "d", "p", "q"))
        return RSA.construct(components)
    except (ValueError, KeyError, TypeError) as exc:
        raise KeyDerivationError("malformed_key", f"Invalid Arweave JWK: {exc}") from exc


def arweave_address(n: int) -> str:
    n_bytes = n.to_bytes((n.bit_length() + 7) // 8, "big")
    return _b64url(hashlib.sha256(n_bytes).digest())


def _arweave_derived(key: RSA.RsaKey) -> DerivedKey:
    return DerivedKey(
        address=arweave_address(key.n),
        private_key=json.dumps(rsa_to_jwk(key), sort_keys=True),
        derivation_path=None,
        public_key=_b64url(key.n),
    )


# ---------------------------------------------------------------------------
# Derivation entry points
# ---------------------------------------------------------------------------

def _from_raw_key(chain: Chain, key: bytes, path: str | None) -> DerivedKey:
    curve = CHAINS[chain].curve
    if chain is Chain.CKETH:
        account = Account.from_key(key)
        public_key = account._key_obj.public_key.to_hex()
        address = account.address
    elif chain is Chain.ICP:
        public = secp256k1_private_key(key).public_key().public_bytes(
            Encoding.X962, PublicFormat.UncompressedPoint
        )
        public_key = "0x" + public.hex()
        address = icp_principal(key)
    elif curve is Curve.ED25519:
        verify_key = bytes(SigningKey(key).verify_key)
        public_key = "0x" + verify_key.hex()
        address = (
            base58.b58encode(verify_key).decode("ascii")
            if chain is Chain.SOLANA
            else ss58_encode(verify_key)
        )
    else:
        raise UnsupportedChainError(chain)
    return DerivedKey(
        address=address,
        private_key="0x" + key.hex(),
        derivation_path=path,
        public_key=public_key,
    )


def derive_from_private_key(chain: str | Chain, private_key: str) -> DerivedKey:
    """Parse *private_key* for *chain* and compute its address."""
    chain = normalize_chain(chain)
    if chain is Chain.ARWEAVE:
        candidate = private_key.strip() if isinstance(private_key, str) else private_key
        if isinstance(candidate, str) and candidate.startswith("{"):
            return _arweave_derived(load_arweave_jwk(candidate))
        material = decode_private_key_bytes(candidate, allowed_lengths=(32, 64))
        return _arweave_derived(_rsa_from_material(material))
    if chain is Chain.SOLANA:
        return _from_raw_key(chain, _decode_solana_secret(private_key), None)
    key = decode_private_key_bytes(private_key)
    if chain in (Chain.CKETH, Chain.ICP):
        secp256k1_private_key(key)
    return _from_raw_key(chain, key, None)


def derive_from_seed(
    chain: str | Chain, seed_phrase: str, derivation_path: str | None = None
) -> DerivedKey:
    """Derive a keypair from a BIP-39 mnemonic along the chain's path."""
    chain = normalize_chain(chain)
    seed = generate_seed_from_mnemonic(seed_phrase)
    if chain is Chain.ARWEAVE:
        return _arweave_derived(_rsa_from_material(seed))

    path = derivation_path or CHAINS[chain].derivation_path
    if CHAINS[chain].curve is Curve.SECP256K1:
        key = _secp256k1_from_seed(seed, path)
    else:
        key = _slip10_ed25519(seed, path)
    return _from_raw_key(chain, key, path)


def derive_wallet_key(
    method: str | CreationMethod,
    chain: str | Chain,
    *,
    seed_phrase: str | None = None,
    private_key: str | None = None,
    derivation_path: str | None = None,
) -> DerivedKey:
    """Single entry point used by the wallet manager."""
    try:
        method = CreationMethod(method)
    except ValueError:
        raise KeyDerivationError("unsupported_method", f"Unknown creation method: {method!r}") from None
    try:
        chain = normalize_chain(chain)
    except UnsupportedChainError as exc:
        raise KeyDerivationError("unsupported_chain", str(exc)) from exc

    if method is CreationMethod.PRIVATE_KEY:
        if not private_key:
            raise KeyDerivationError("malformed_key", "Private key is required for method 'private-key'")
        return derive_from_private_key(chain, private_key)
    return derive_from_seed(chain, seed_phrase or "", derivation_path)


def resolve_private_key(wallet: WalletData) -> str:
    """Return the signing key for *wallet*, re-deriving it from the mnemonic.

    The derived address must match the stored one; anything else means the
    record and its secret have drifted apart.
    """
    if wallet.private_key:
        return wallet.private_key
    if not wallet.mnemonic:
        raise KeyDerivationError("missing_material", f"Wallet {wallet.id} holds no key material")
    derived = derive_from_seed(wallet.chain, wallet.mnemonic, wallet.derivation_path)
    if derived.address != wallet.address:
        raise KeyDerivationError(
            "address_mismatch", f"Re-derived address does not match wallet {wallet.id}"
        )
    return derived.private_key
