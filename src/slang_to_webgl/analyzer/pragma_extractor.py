"""
Pragma metadata extraction.

Collects '#pragma parameter', '#pragma name' and '#pragma format' lines.
'#pragma stage' is left to StageSplitter.
"""

import logging
import re
from typing import Dict, Optional

from ..transformer.shader_ir import ParameterDeclaration, PragmaInfo

logger = logging.getLogger(__name__)

_NUMBER = r'[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?'

PARAMETER_RE = re.compile(
    r'^\s*#\s*pragma\s+parameter\s+(\w+)\s+"([^"]*)"'
    rf'\s+({_NUMBER})\s+({_NUMBER})\s+({_NUMBER})(?:\s+({_NUMBER}))?'
)
_PARAMETER_LINE_RE = re.compile(r'^\s*#\s*pragma\s+parameter\b')
_NAME_RE = re.compile(r'^\s*#\s*pragma\s+name\s+(\S+)')
_FORMAT_RE = re.compile(r'^\s*#\s*pragma\s+format\s+(\S+)')


class PragmaExtractor:
    """
    Line scanner for pragma metadata.

    Usage:
        info = PragmaExtractor().extract(source)
        names = info.exclusion_names()
    """

    def extract(self, source: str) -> PragmaInfo:
        """
        Scan source for pragma metadata.

        Returns:
            PragmaInfo with parameters in source order; for duplicate
            parameter names the first declaration wins
        """
        parameters: Dict[str, ParameterDeclaration] = {}
        name: Optional[str] = None
        shader_format: Optional[str] = None

        for number, line in enumerate(source.split('\n'), start=1):
            if _PARAMETER_LINE_RE.match(line):
                param = self._parse_parameter(line, number)
                if param is None:
                    continue
                if param.name in parameters:
                    logger.debug("Duplicate parameter %s on line %d ignored", param.name, number)
                    continue
                parameters[param.name] = param
                continue

            match = _NAME_RE.match(line)
            if match:
                name = match.group(1)
                continue

            match = _FORMAT_RE.match(line)
            if match:
                shader_format = match.group(1)

        return PragmaInfo(parameters=tuple(parameters.values()), name=name, format=shader_format)

    @staticmethod
    def _parse_parameter(line: str, number: int) -> Optional[ParameterDeclaration]:
        match = PARAMETER_RE.match(line)
        if match is None:
            logger.warning("Malformed parameter pragma on line %d: %s", number, line.strip())
            return None
        name, label, default, minimum, maximum, step = match.groups()
        return ParameterDeclaration(
            name=name,
            display_name=label,
            default=float(default),
            minimum=float(minimum),
            maximum=float(maximum),
            step=float(step) if step is not None else 0.0,
        )
