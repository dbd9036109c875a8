"""Default prompt templates for structured extraction.

This module contains helper functions that return the instructions sent
to generative models, plus the JSON schema every provider must reply
with. Keeping prompts in a central location makes it easier to iterate
on their content and ensure consistency across providers.
"""

from __future__ import annotations

from textwrap import dedent
from typing import Any, Dict


_SHAPE = dedent(
    """
    Return ONLY valid JSON with this structure:
    {
      "merchantName": "string or null",
      "purchaseDate": "YYYY-MM-DD or null",
      "items": [
        {"name": "string", "unitPrice": number, "quantity": integer}
      ],
      "declaredTotal": number or null,
      "currency": "ISO 4217 code, e.g. USD",
      "confidence": number between 0 and 1
    }
    """
).strip()


def get_vision_extraction_prompt() -> str:
    """Return the instructions used when the model reads the receipt image."""
    return dedent(
        """
        You are an expert receipt parser with vision capabilities. Analyse
        the receipt image and extract structured data.

        - Read ALL text visible in the receipt image.
        - Extract the store or merchant name exactly as printed at the top.
        - Give the purchase date in ISO 8601 format (YYYY-MM-DD).
        - List EVERY item with its unit price and quantity. If no quantity
          is printed, use 1.
        - Extract the total amount (including tax) from the bottom.
        - Use exact numbers from the receipt; do not round.
        - If a field is not visible or unclear, set it to null.
        - Set confidence from image quality and text clarity (0 to 1).
        - Do not invent data that is not on the receipt.
        """
    ).strip() + "\n\n" + _SHAPE


def get_text_extraction_prompt(ocr_text: str) -> str:
    """Return the instructions used when the model reads OCR output."""
    return dedent(
        """
        You are an expert receipt parser. The text below was produced by
        OCR from a photographed receipt and may contain recognition noise.
        Extract the merchant name, purchase date (YYYY-MM-DD), every line
        item with unit price and quantity (1 if not printed), and the total
        amount including tax. Use null for anything you cannot read and
        never invent values. Set confidence from how legible the text is.
        """
    ).strip() + "\n\n" + _SHAPE + "\n\nReceipt text:\n\"\"\"\n" + ocr_text + "\n\"\"\""


def get_receipt_json_schema() -> Dict[str, Any]:
    """JSON schema handed to providers that support constrained output."""
    return {
        "type": "object",
        "properties": {
            "merchantName": {"type": ["string", "null"], "description": "Name of the store or merchant"},
            "purchaseDate": {
                "type": ["string", "null"],
                "description": "Purchase date in ISO 8601 format (YYYY-MM-DD)",
            },
            "items": {
                "type": "array",
                "description": "Purchased items",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Product name"},
                        "unitPrice": {"type": "number", "description": "Price per unit"},
                        "quantity": {"type": "integer", "description": "Quantity purchased", "default": 1},
                    },
                    "required": ["name", "unitPrice"],
                },
            },
            "declaredTotal": {"type": ["number", "null"], "description": "Total amount printed on the receipt"},
            "currency": {"type": "string", "description": "Currency code", "default": "USD"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        },
        "required": ["merchantName", "purchaseDate", "items", "declaredTotal", "currency", "confidence"],
    }
