"""Core (UI-agnostic) opportunity dashboard logic.

This package contains:
- workbook ingestion (XLSX -> pandas) and the dataset context
- revenue allocation across service lines
- filter normalization and the filter pipeline
- page compute functions (JSON-serializable payloads), including the client-grouped opportunity list
- chart helpers (Altair -> Vega-Lite spec dict)
"""
