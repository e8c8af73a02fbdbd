"""
TLE Parser Module

Turns CelesTrak two-line element text into immutable OrbitalElement records.

Field extraction goes through the sgp4 library; this module adds what a live
feed needs around it:
- Line-ending normalization (CelesTrak may answer with CRLF)
- Name / line 1 / line 2 grouping for both 2-line and 3-line layouts
- Structural and checksum validation per element set
- Per-satellite isolation: one malformed set is skipped, the batch survives
"""

import math
from datetime import datetime, timezone, timedelta
from typing import List

from sgp4.api import Satrec

from geofeed_service.errors import ValidationError
from geofeed_service.models import OrbitalElement
from logging_config import get_logger

logger = get_logger(__name__)

TLE_LINE_LENGTH = 69


class TLEParser:
    """
    Parser for Two-Line Element (TLE) sets.

    Provides methods for:
    - Validating a single element set (line numbers, catalog match, checksums)
    - Parsing a single set into an OrbitalElement
    - Parsing a whole CelesTrak response, skipping malformed sets
    """

    def normalize_text(self, text: str) -> str:
        """Normalize CRLF / CR line endings to LF."""
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def validate_lines(self, line1: str, line2: str) -> None:
        """
        Structural validation of one element set.

        Raises
        ------
        ValidationError
            If either line is short, misnumbered, fails its checksum, or the
            two lines disagree on the catalog number.
        """
        for number, line in (("1", line1), ("2", line2)):
            if len(line) < TLE_LINE_LENGTH:
                raise ValidationError(f"TLE line {number} too short ({len(line)} chars)")
            if line[0] != number or line[1] != " ":
                raise ValidationError(f"Expected TLE line {number}, got {line[:2]!r}")
            expected = line[68]
            if not expected.isdigit() or int(expected) != self._checksum(line):
                raise ValidationError(
                    f"Checksum mismatch on line {number}: expected {expected}, "
                    f"computed {self._checksum(line)}"
                )

        if line1[2:7] != line2[2:7]:
            raise ValidationError(
                f"Catalog number mismatch between lines ({line1[2:7]!r} vs {line2[2:7]!r})"
            )

    def parse_tle(self, line1: str, line2: str, name: str = "") -> OrbitalElement:
        """
        Parse TLE lines into an OrbitalElement.

        Args:
            line1: First line of TLE
            line2: Second line of TLE
            name: Optional satellite name (line 0)

        Returns:
            OrbitalElement with angles in degrees and mean motion in rev/day

        Raises:
            ValidationError: malformed set or physically invalid elements
        """
        line1 = line1.rstrip()
        line2 = line2.rstrip()
        self.validate_lines(line1, line2)

        # Reject before sgp4 initialisation divides by the mean motion
        try:
            mean_motion = float(line2[52:63])
        except ValueError as e:
            raise ValidationError(f"Unreadable mean motion field: {line2[52:63]!r}") from e
        if mean_motion <= 0.0:
            raise ValidationError(f"Mean motion must be positive, got {mean_motion}")

        try:
            satellite = Satrec.twoline2rv(line1, line2)
        except ValueError as e:
            raise ValidationError(f"sgp4 rejected element set: {e}") from e

        if not 0.0 <= satellite.ecco < 1.0:
            raise ValidationError(f"Eccentricity out of range: {satellite.ecco}")

        try:
            epoch_year = int(line1[18:20])
        except ValueError as e:
            raise ValidationError(f"Unreadable epoch year: {line1[18:20]!r}") from e

        return OrbitalElement(
            catalog_number=satellite.satnum,
            name=name.strip() or f"SAT_{satellite.satnum}",
            epoch=self.epoch_to_datetime(epoch_year, satellite.epochdays),
            inclination=math.degrees(satellite.inclo),
            right_ascension_of_ascending_node=math.degrees(satellite.nodeo),
            eccentricity=satellite.ecco,
            argument_of_perigee=math.degrees(satellite.argpo),
            mean_anomaly=math.degrees(satellite.mo),
            mean_motion=mean_motion,
            line1=line1,
            line2=line2,
        )

    def parse_many(self, text: str) -> List[OrbitalElement]:
        """
        Parse every element set in a CelesTrak TLE response.

        Accepts both the 3-line layout (name, line 1, line 2) and bare 2-line
        sets. Sets with the wrong line count or a failed validation are
        skipped individually.
        """
        lines = [line.rstrip() for line in self.normalize_text(text).split("\n") if line.strip()]
        elements: List[OrbitalElement] = []
        skipped = 0
        name = ""
        i = 0

        while i < len(lines):
            line = lines[i]
            if line.startswith("1 ") and i + 1 < len(lines) and lines[i + 1].startswith("2 "):
                try:
                    elements.append(self.parse_tle(line, lines[i + 1], name))
                except ValidationError as e:
                    skipped += 1
                    logger.debug(f"Skipping TLE for {name or line[2:7]}: {e}")
                name = ""
                i += 2
            elif line.startswith("1 ") or line.startswith("2 "):
                # Orphan line: its partner is missing
                skipped += 1
                logger.debug(f"Skipping incomplete TLE set near {name or line[2:7]!r}")
                name = ""
                i += 1
            else:
                name = line.strip()
                i += 1

        if skipped:
            logger.info(f"Parsed {len(elements)} element sets, skipped {skipped} malformed")
        return elements

    def epoch_to_datetime(self, epoch_year: int, epoch_days: float) -> datetime:
        """
        Convert TLE epoch to datetime.

        Args:
            epoch_year: Two-digit year
            epoch_days: Day of year with fractional part

        Returns:
            Datetime object in UTC
        """
        year = 1900 + epoch_year if epoch_year >= 57 else 2000 + epoch_year
        return self._epoch_to_datetime(year, epoch_days)

    def _epoch_to_datetime(self, year: int, days: float) -> datetime:
        """Convert year and fractional days to datetime."""
        dt = datetime(year, 1, 1, tzinfo=timezone.utc)
        return dt + timedelta(days=days - 1.0)  # day 1 is Jan 1

    def _checksum(self, line: str) -> int:
        """Calculate TLE checksum."""
        checksum = 0
        for char in line[:68]:
            if char.isdigit():
                checksum += int(char)
            elif char == "-":
                checksum += 1
        return checksum % 10
