"""
medallion - scheduled ingestion orchestrator with a bronze/silver/gold pipeline.

- medallion.core: errors, logging, settings, models, storage protocols
- medallion.storage: in-memory and SQLite stores
- medallion.ingest: producer adapter and sample sources
- medallion.transform: silver append log and gold dedup materializer
- medallion.orchestration: run guard, retry policy, orchestrator, scheduler
- medallion.api / medallion.cli: HTTP and command-line surfaces
"""

__version__ = "0.1.0"
