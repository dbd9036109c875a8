"""Top-level package for the receipt extraction pipeline.

This package turns a photograph of a purchase receipt into a validated,
structured record. It contains the image normaliser, the OCR engine
wrapper, the pluggable structured extractors, date validation,
reconciliation of declared and computed totals, the job orchestrator and
the status stream that reports job progress to callers.

The background worker is started with:

```bash
dramatiq tally.worker --processes 1 --threads 5
```

and the status API with:

```bash
uvicorn tally.api.main:app --reload
```
"""

__all__: list[str] = []
