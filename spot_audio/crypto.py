"""
Deezer stream codec: key derivation, stripe decryption and legacy CDN URLs.

Deezer serves audio as "BF_CBC_STRIPE": the file is cut into 2048-byte
chunks and every third full chunk (index 0, 3, 6, ...) is Blowfish-CBC
encrypted with a per-track key. When the session-token media endpoint
refuses a track, a legacy CDN path can be built from the track's origin
hash by AES-ECB encrypting a delimited descriptor.

Failure semantics:
    decrypt_payload() and build_legacy_stream_url() return None on any
    cryptographic or parsing failure. They never raise; callers treat
    None as "this provider cannot serve this track".
"""

import binascii
import hashlib

from Crypto.Cipher import AES, Blowfish

from spot_audio.core.logger import get_logger


logger = get_logger(__name__)

BLOWFISH_MASTER_KEY = b"g4el58wc0zvf9na1"
BLOWFISH_IV = bytes(range(8))
CHUNK_SIZE = 2048

LEGACY_URL_AES_KEY = b"jo6aey6haid2Teih"
LEGACY_URL_SEPARATOR = b"\xa4"
LEGACY_CDN_URL = "https://e-cdns-proxy-{shard}.dzcdn.net/mobile/1/{path}"

# Format codes understood by the legacy CDN path
FORMAT_CODES: dict[str, int] = {
    "MP3_128": 1,
    "MP3_320": 3,
    "FLAC": 9,
}


def derive_content_key(track_id: str) -> bytes:
    """
    Derive the 16-byte Blowfish key for a track.
    
    key[i] = md5hex[i] ^ md5hex[i + 16] ^ master[i]
    
    Args:
        track_id: Deezer numeric track ID (SNG_ID).
    
    Returns:
        The per-track key. Pure and deterministic.
    """
    digest = hashlib.md5(track_id.encode("ascii")).hexdigest()
    return bytes(
        ord(digest[i]) ^ ord(digest[i + 16]) ^ BLOWFISH_MASTER_KEY[i]
        for i in range(16)
    )


def decrypt_payload(ciphertext: bytes, track_id: str) -> bytes | None:
    """
    Decrypt a BF_CBC_STRIPE payload.
    
    Every third 2048-byte chunk is decrypted independently with a fresh
    CBC cipher (fixed IV 00..07, no padding). A trailing short chunk is
    never decrypted, whatever its index.
    
    Args:
        ciphertext: Raw downloaded bytes.
        track_id: SNG_ID the payload belongs to.
    
    Returns:
        Decrypted bytes, same length as the input, or None on failure.
    """
    try:
        key = derive_content_key(track_id)
        out = bytearray()
        
        for index, offset in enumerate(range(0, len(ciphertext), CHUNK_SIZE)):
            chunk = ciphertext[offset:offset + CHUNK_SIZE]
            if index % 3 == 0 and len(chunk) == CHUNK_SIZE:
                chunk = Blowfish.new(key, Blowfish.MODE_CBC, iv=BLOWFISH_IV).decrypt(chunk)
            out.extend(chunk)
        
        return bytes(out)
    except (ValueError, TypeError, UnicodeEncodeError) as e:
        logger.debug(f"Stripe decryption failed for track {track_id}: {e}")
        return None


def build_legacy_stream_url(
    md5_origin: str,
    media_version: str,
    track_id: str,
    format_code: int
) -> str | None:
    """
    Build the legacy CDN URL for a track.
    
    Behavior:
        1. step1 = md5_origin | format_code | track_id | media_version
           joined with the 0xA4 separator
        2. info = md5hex(step1) | step1 | (trailing separator)
        3. Zero-pad info to a 16-byte boundary
        4. AES-128-ECB encrypt, hex encode
        5. Host shard = first character of md5_origin
    
    Args:
        md5_origin: MD5_ORIGIN field of the track data.
        media_version: MEDIA_VERSION field of the track data.
        track_id: SNG_ID.
        format_code: One of FORMAT_CODES values.
    
    Returns:
        The CDN URL, or None if the inputs cannot be encoded.
    """
    try:
        if not md5_origin:
            return None
        
        step1 = LEGACY_URL_SEPARATOR.join([
            md5_origin.encode("ascii"),
            str(format_code).encode("ascii"),
            track_id.encode("ascii"),
            str(media_version).encode("ascii"),
        ])
        step1_hash = hashlib.md5(step1).hexdigest().encode("ascii")
        
        info = step1_hash + LEGACY_URL_SEPARATOR + step1 + LEGACY_URL_SEPARATOR
        info += b"\x00" * ((16 - len(info) % 16) % 16)
        
        encrypted = AES.new(LEGACY_URL_AES_KEY, AES.MODE_ECB).encrypt(info)
        path = binascii.hexlify(encrypted).decode("ascii")
        
        return LEGACY_CDN_URL.format(shard=md5_origin[0], path=path)
    except (ValueError, TypeError, UnicodeEncodeError) as e:
        logger.debug(f"Legacy URL construction failed for track {track_id}: {e}")
        return None
