"""Orchestration components: ledger, output, files, install, dev server, preview."""
