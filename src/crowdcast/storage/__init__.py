"""DuckDB persistence for markets, predictions, tracking, social links and proposals."""
