"""
iTunes tag atoms for ALAC (.m4a) output.

ffmpeg has no way to write the advisory or catalog atoms, so they are
added afterwards with mutagen, working on an in-memory buffer:
    - rtng: content advisory, 1 = explicit
    - cnID: iTunes track ID
    - plID: iTunes collection (album) ID
    - atID: iTunes artist ID
    - geID: iTunes genre ID
"""

from dataclasses import dataclass
from io import BytesIO

from mutagen import MutagenError
from mutagen.mp4 import MP4

from spot_audio.core.exceptions import MetadataError


EXPLICIT_RATING = 1


@dataclass(frozen=True)
class CatalogIds:
    """
    iTunes catalog identifiers. Zero or None means "not known".

    Attributes:
        track_id: Written as cnID.
        collection_id: Written as plID.
        artist_id: Written as atID.
        genre_id: Written as geID.
    """
    track_id: int | None = None
    collection_id: int | None = None
    artist_id: int | None = None
    genre_id: int | None = None

    def atoms(self) -> dict[str, int]:
        values = {
            "cnID": self.track_id,
            "plID": self.collection_id,
            "atID": self.artist_id,
            "geID": self.genre_id,
        }
        return {name: int(value) for name, value in values.items() if value}


def patch_mp4_tags(
    buffer: bytes,
    explicit: bool = False,
    catalog_ids: CatalogIds | None = None
) -> bytes:
    """
    Add the advisory and catalog atoms to an MP4 buffer.

    Args:
        buffer: Complete .m4a file contents.
        explicit: Write rtng=1 when True.
        catalog_ids: Catalog atoms to write, if any.

    Returns:
        The patched file contents. The input is returned unchanged when
        there is nothing to write.

    Raises:
        MetadataError: If mutagen cannot parse or save the buffer.
    """
    atoms = catalog_ids.atoms() if catalog_ids is not None else {}
    if explicit:
        atoms["rtng"] = EXPLICIT_RATING
    if not atoms:
        return buffer

    stream = BytesIO(buffer)
    try:
        audio = MP4(stream)
        if audio.tags is None:
            audio.add_tags()
        for name, value in atoms.items():
            audio.tags[name] = [value]
        stream.seek(0)
        audio.save(stream)
    except MutagenError as e:
        raise MetadataError(
            f"Failed to write MP4 tag atoms: {e}",
            details={"atoms": sorted(atoms)}
        ) from e

    return stream.getvalue()
