"""
MusicXML -> kern conversion through the external musicxml2hum tool.
"""

import logging
import os
import shutil
import subprocess
import tempfile

from simplehash_errors import ConversionError

logger = logging.getLogger(__name__)

DEFAULT_CONVERTER = "musicxml2hum"
CONVERT_TIMEOUT_S = 60


def converter_command() -> str:
    return os.environ.get("MUSICXML2HUM") or DEFAULT_CONVERTER


def convert_musicxml(musicxml: str, command: str = None) -> str:
    """
    Convert a MusicXML document to kern text.

    The query is written to a temp file because musicxml2hum reads files.

    Raises:
        ConversionError: the tool is missing, fails, or prints nothing
    """
    command = command or converter_command()
    if shutil.which(command) is None:
        raise ConversionError(f"converter not found: {command}")

    with tempfile.TemporaryDirectory() as tmp_dir:
        xml_path = os.path.join(tmp_dir, "query.musicxml")
        with open(xml_path, "w", encoding="utf-8") as f:
            f.write(musicxml)

        try:
            completed = subprocess.run(
                [command, xml_path],
                capture_output=True,
                timeout=CONVERT_TIMEOUT_S,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ConversionError(f"{command} failed: {e}") from e

    if completed.returncode != 0:
        stderr = completed.stderr.decode("iso-8859-1", errors="replace").strip()
        raise ConversionError(f"{command} exited with {completed.returncode}: {stderr}")

    kern = completed.stdout.decode("iso-8859-1")
    if not kern.strip():
        raise ConversionError(f"{command} produced no output")

    logger.debug("Converted MusicXML query (%d bytes of kern)", len(kern))
    return kern
