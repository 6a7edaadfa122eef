from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer

# Decimals stay exact in Python but render as JSON numbers, not strings.
Money = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]

Quantity = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]
