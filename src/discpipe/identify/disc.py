"""Structural probing of a mounted disc."""

import base64
import hashlib
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from defusedxml import ElementTree

logger = logging.getLogger(__name__)

DISCINFO_NS = "{urn:BDA:bdmv;discinfo}"


@dataclass
class DiscProbe:
    """What the disc itself tells us before any lookup."""

    disctype: str
    label: str = ""
    title: str = ""
    crc_id: str = ""
    protected: bool = False


def detect_disc_type(mountpoint: Path) -> str:
    """BDMV -> bluray, VIDEO_TS -> dvd, AUDIO_TS -> music, else data."""
    if (mountpoint / "BDMV").is_dir():
        return "bluray"
    if (mountpoint / "VIDEO_TS").is_dir():
        return "dvd"
    if (mountpoint / "AUDIO_TS").is_dir():
        return "music"
    return "data"


def read_bluray_title(mountpoint: Path) -> str:
    """Disc title from ``BDMV/META/DL/bdmt_*.xml``, English first."""
    meta_dir = mountpoint / "BDMV" / "META" / "DL"
    candidates = sorted(meta_dir.glob("bdmt_*.xml")) if meta_dir.is_dir() else []
    candidates.sort(key=lambda p: p.name != "bdmt_eng.xml")

    for xml_path in candidates:
        try:
            root = ElementTree.parse(xml_path).getroot()
        except (ElementTree.ParseError, OSError) as e:
            logger.warning(f"Failed to parse {xml_path.name}: {e}")
            continue
        if root is None:
            continue
        name = root.find(f".//{DISCINFO_NS}name")
        if name is not None and name.text and name.text.strip():
            return name.text.strip()
    return ""


def read_volume_label(devpath: str) -> str:
    """Filesystem label via ``blkid``. Empty when unavailable."""
    try:
        result = subprocess.run(
            ["blkid", "-o", "value", "-s", "LABEL", devpath],
            check=False,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.SubprocessError, FileNotFoundError) as e:
        logger.warning(f"Failed to read volume label of {devpath}: {e}")
        return ""
    return result.stdout.strip()


def label_to_title(label: str) -> str:
    return " ".join(label.replace("_", " ").split())


def is_protected(mountpoint: Path, disctype: str) -> bool:
    """Blu-ray AACS protection shows up as an ``AACS`` directory."""
    if disctype != "bluray":
        return False
    return (mountpoint / "AACS").is_dir() or (mountpoint / "BDMV" / "AACS").is_dir()


def structural_fingerprint(mountpoint: Path) -> str:
    """SHA-1 over the relative paths and sizes of every file on the disc."""
    digest = hashlib.sha1()  # noqa: S324
    for root, dirs, files in os.walk(mountpoint):
        dirs.sort()
        for name in sorted(files):
            path = Path(root) / name
            try:
                size = path.stat().st_size
            except OSError:
                size = -1
            rel = path.relative_to(mountpoint).as_posix()
            digest.update(f"{rel}\0{size}\n".encode())
    return digest.hexdigest()


def musicbrainz_disc_id(toc: str) -> str:
    """Compute a MusicBrainz disc id from ``cd-discid --musicbrainz`` output.

    The output is ``<tracks> <offset 1> ... <offset n> <leadout>`` in sectors.
    """
    values = [int(v) for v in toc.split()]
    if len(values) < 3:
        msg = f"Unexpected table of contents: {toc!r}"
        raise ValueError(msg)
    count = values[0]
    offsets = values[1 : count + 1]
    leadout = values[count + 1]

    payload = f"{1:02X}{count:02X}{leadout:08X}"
    for index in range(99):
        payload += f"{offsets[index] if index < len(offsets) else 0:08X}"

    raw = hashlib.sha1(payload.encode("ascii")).digest()  # noqa: S324
    return base64.b64encode(raw).decode("ascii").translate(str.maketrans("+/=", "._-"))


def read_music_disc_id(devpath: str) -> str:
    try:
        result = subprocess.run(
            ["cd-discid", "--musicbrainz", devpath],
            check=False,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.SubprocessError, FileNotFoundError) as e:
        logger.warning(f"cd-discid unavailable: {e}")
        return ""
    if result.returncode != 0 or not result.stdout.strip():
        logger.warning(f"cd-discid failed for {devpath}: {result.stderr.strip()}")
        return ""
    try:
        return musicbrainz_disc_id(result.stdout)
    except (ValueError, IndexError) as e:
        logger.warning(f"Could not compute disc id: {e}")
        return ""


def probe_disc(devpath: str, mountpoint: Path) -> DiscProbe:
    """Detect type, structural title, label, fingerprint and protection."""
    disctype = detect_disc_type(mountpoint)
    label = read_volume_label(devpath)
    probe = DiscProbe(disctype=disctype, label=label)

    if disctype == "bluray":
        probe.title = read_bluray_title(mountpoint)
        if not probe.label:
            probe.label = probe.title
    elif disctype == "dvd" and label:
        probe.title = label_to_title(label)

    if disctype == "music":
        probe.crc_id = read_music_disc_id(devpath)
    else:
        probe.crc_id = structural_fingerprint(mountpoint)

    probe.protected = is_protected(mountpoint, disctype)
    logger.info(
        f"Probed {devpath}: type={disctype} label={probe.label!r} "
        f"title={probe.title!r} protected={probe.protected}",
    )
    return probe
