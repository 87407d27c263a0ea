"""Type definitions for Serial Line Monitor."""

from typing import Any, Callable, Dict

# A line predicate receives one trimmed line and returns True on a match
LinePredicate = Callable[[str], bool]

# Decoded JSON object from a command response line
JsonResponse = Dict[str, Any]

# Configuration loaded from a JSON file, e.g. {"serialPort": "/dev/ttyACM0"}
ConfigDict = Dict[str, Any]
