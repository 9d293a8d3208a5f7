"""
Decoders for ERP result envelopes.

Every ERP operation answers with the same nesting, only the field names
differ::

    [ { <wrapper>: { <row>: {...} | [{...}, ...] } } ]

The row field holds a single object when the operation returned one row and
a list otherwise. ``Envelope.decode`` turns all of that into a flat list of
dicts.
"""

import logging
from collections.abc import Mapping
from typing import NamedTuple

from .exceptions import DataShapeFailure

logger = logging.getLogger(__name__)


def envelope_body(result):
    """Return the first element of a result envelope, or the result itself."""
    if isinstance(result, (list, tuple)):
        return result[0] if result else None
    return result


class Envelope(NamedTuple):
    wrapper: str
    row: str

    def rows(self, result) -> list[dict]:
        """
        Extract rows, raising DataShapeFailure on an unexpected structure.

        Besides the full ``[{wrapper: {row: ...}}]`` envelope this accepts
        what zeep returns once it has unwrapped single-child response
        elements: ``{row: ...}`` or the plain list of rows.
        """
        if isinstance(result, (list, tuple)):
            first = result[0] if result else None
            if first is None:
                return []
            if not isinstance(first, Mapping):
                raise DataShapeFailure(
                    f"Expected an object envelope, got {type(first).__name__}.",
                    details={'wrapper': self.wrapper},
                )
            if self._is_envelope(first):
                return self._from_body(first)
            return self._row_list(result)

        if result is None:
            return []
        if not isinstance(result, Mapping):
            raise DataShapeFailure(
                f"Expected an object envelope, got {type(result).__name__}.",
                details={'wrapper': self.wrapper},
            )
        return self._from_body(result)

    def _is_envelope(self, body: Mapping) -> bool:
        return not body or self.wrapper in body or self.row in body

    def _from_body(self, body: Mapping) -> list[dict]:
        if self.wrapper not in body:
            return self._row_field(body.get(self.row))

        container = body[self.wrapper]
        if container is None:
            return []
        if isinstance(container, (list, tuple)):
            return self._row_list(container)
        if not isinstance(container, Mapping):
            raise DataShapeFailure(
                f"'{self.wrapper}' is {type(container).__name__}, not an object.",
                details={'wrapper': self.wrapper},
            )
        return self._row_field(container.get(self.row))

    def _row_field(self, rows) -> list[dict]:
        if rows is None:
            return []
        if isinstance(rows, Mapping):
            return [dict(rows)]
        if isinstance(rows, (list, tuple)):
            return self._row_list(rows)
        raise DataShapeFailure(
            f"'{self.wrapper}.{self.row}' is {type(rows).__name__}.",
            details={'wrapper': self.wrapper, 'row': self.row},
        )

    def _row_list(self, rows) -> list[dict]:
        decoded = [dict(row) for row in rows if isinstance(row, Mapping)]
        if len(decoded) != len(rows):
            logger.warning(
                "Dropped %d non-object rows from %s.%s.",
                len(rows) - len(decoded), self.wrapper, self.row,
            )
        return decoded

    def decode(self, result) -> list[dict]:
        """Like ``rows`` but a malformed envelope yields an empty list."""
        try:
            return self.rows(result)
        except DataShapeFailure as exc:
            logger.warning("Malformed result envelope, treating as empty: %s", exc)
            return []


PRODUCTS_WITH_PRICES = Envelope('TTStoklar', 'TTStoklarRow')
LEGACY_PRODUCTS = Envelope('TTStok', 'TTStokRow')
CATEGORY_GROUPS = Envelope('urungruplari', 'urungruplariRow')
SUB_GROUPS = Envelope('altgrup', 'altgrupRow')
SUB_GROUPS2 = Envelope('altgrup2', 'altgrup2Row')
ORDERS = Envelope('TTsiparis', 'TTsiparisRow')
EXTRACT = Envelope('TTekstre', 'TTekstreRow')
EXTRACT_DETAIL = Envelope('TTfkndet', 'TTfkndetRow')
CUSTOMERS = Envelope('ttCust', 'ttCustRow')
