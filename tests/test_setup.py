"""Test that the project setup is working correctly."""

import aptos_trade_indexer


def test_version() -> None:
    """Test that version is defined."""
    assert aptos_trade_indexer.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from aptos_trade_indexer import aggregator
    from aptos_trade_indexer import ingestor
    from aptos_trade_indexer import pipeline
    from aptos_trade_indexer import storage

    assert aggregator is not None
    assert ingestor is not None
    assert pipeline is not None
    assert storage is not None
