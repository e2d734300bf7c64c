"""
Extraction Engine
=================
Main orchestrator that wires configuration, logging, the walker, the
report engine and the overlay controller together.

Usage:
    engine = XRayEngine(XRayConfig())
    result = engine.extract_snapshot("page.json")
    # result is an ExtractionResult; result.to_wire() is the extraction call

Architecture:
    RenderTree → SegmentWalker (Codec + Oracle) → ExtractionResult →
    ReportEngine / OverlaySyncEngine → highlight layer
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from . import __version__
from .layer import LayerSettings
from .models import ExtractionReport, ExtractionResult, UnterminatedPolicy
from .oracle import OracleSettings
from .overlay import OverlaySyncEngine
from .painters import Painter
from .pdf_tree import PdfRenderTree
from .render_tree import RenderTree
from .report import ReportEngine
from .snapshot import SnapshotRenderTree
from .walker import DISALLOWED_TAGS, SegmentWalker

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_PREFIX = "SEGXRAY_"


@dataclass
class XRayConfig:
    """Configuration for the extraction engine and overlay sessions."""

    # Visibility oracle
    clip_threshold: float = 0.5
    corner_inset: float = 2.0

    # Walker
    unterminated_policy: UnterminatedPolicy = UnterminatedPolicy.DROP
    disallowed_tags: frozenset[str] = field(
        default_factory=lambda: DISALLOWED_TAGS
    )

    # Overlay
    peek_key: str = "Shift"
    resize_debounce_ms: int = 250
    highlight_padding: float = 4.0
    min_highlight_width: float = 20.0
    min_highlight_height: float = 16.0
    tooltip_text_limit: int = 60
    tooltip_value_limit: int = 40

    # Output settings
    output_dir: str = "output"
    save_report: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def oracle_settings(self) -> OracleSettings:
        return OracleSettings(
            clip_threshold=self.clip_threshold,
            corner_inset=self.corner_inset,
        )

    @property
    def layer_settings(self) -> LayerSettings:
        return LayerSettings(
            padding=self.highlight_padding,
            min_width=self.min_highlight_width,
            min_height=self.min_highlight_height,
            text_limit=self.tooltip_text_limit,
            value_limit=self.tooltip_value_limit,
        )

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "XRayConfig":
        """
        Build a config from ``SEGXRAY_*`` environment variables.
        Explicit keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        casts = {
            "clip_threshold": float,
            "corner_inset": float,
            "unterminated_policy": UnterminatedPolicy,
            "peek_key": str,
            "resize_debounce_ms": int,
            "output_dir": str,
            "log_level": str,
            "log_file": str,
        }
        values = {}
        for name, cast in casts.items():
            raw = env.get(ENV_PREFIX + name.upper())
            if raw:
                values[name] = cast(raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class XRayEngine:
    """
    Segment extraction engine.

    Orchestrates:
        1. Render tree loading (snapshot or PDF page)
        2. Segment walking (codec + visibility oracle)
        3. Reporting
        4. Output saving
        5. Overlay controller construction
    """

    def __init__(self, config: Optional[XRayConfig] = None):
        self.config = config or XRayConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        package_logger = logging.getLogger("segxray")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(file_handler)

    # ── Extraction ───────────────────────────────────────────────────

    def walker(self, tree: RenderTree) -> SegmentWalker:
        return SegmentWalker(
            tree,
            unterminated_policy=self.config.unterminated_policy,
            disallowed_tags=self.config.disallowed_tags,
            oracle_settings=self.config.oracle_settings,
        )

    def extract(self, tree: RenderTree) -> ExtractionResult:
        """Run one full extraction pass over ``tree``."""
        start_time = time.time()
        result = self.walker(tree).walk()
        elapsed = time.time() - start_time
        if result.succeeded:
            logger.info(
                f"Extraction complete in {elapsed:.3f}s — "
                f"{len(result.text_elements)} segments"
            )
        return result

    def extract_snapshot(self, snapshot_path: str) -> ExtractionResult:
        """
        Extract segments from a JSON render-tree snapshot.

        Raises:
            FileNotFoundError: If the snapshot doesn't exist.
        """
        if not os.path.exists(snapshot_path):
            raise FileNotFoundError(f"Snapshot not found: {snapshot_path}")
        logger.info(f"Starting extraction of: {snapshot_path}")
        return self.extract(SnapshotRenderTree.from_json(snapshot_path))

    def extract_pdf(self, pdf_path: str, page_number: int = 1) -> ExtractionResult:
        """
        Extract segments from one page of a PDF.

        Raises:
            FileNotFoundError: If the PDF doesn't exist.
            ValueError: If the page is out of range.
        """
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")
        logger.info(f"Starting extraction of: {pdf_path} (page {page_number})")
        return self.extract(PdfRenderTree.open(pdf_path, page_number))

    def report(self, result: ExtractionResult) -> ExtractionReport:
        return ReportEngine().validate(result)

    # ── Overlay ──────────────────────────────────────────────────────

    def create_overlay(
        self,
        painter: Painter,
        get_tree: Callable[[], RenderTree],
        clock: Callable[[], float] = time.monotonic,
    ) -> OverlaySyncEngine:
        """Overlay controller whose re-extractions walk ``get_tree()``."""
        return OverlaySyncEngine(
            painter,
            extractor=lambda: self.walker(get_tree()).walk(),
            page_size=lambda: get_tree().document_size(),
            layer_settings=self.config.layer_settings,
            peek_key=self.config.peek_key,
            resize_debounce=self.config.resize_debounce_ms / 1000,
            clock=clock,
        )

    # ── Output ───────────────────────────────────────────────────────

    def save(
        self,
        result: ExtractionResult,
        name: str,
        report: Optional[ExtractionReport] = None,
    ) -> Path:
        """Save the wire result (and report) under the output directory."""
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        output_file = output_dir / f"{_clean_name(name)}_segments.json"
        self._save_json_dict(
            {"version": __version__, **result.to_wire()}, output_file
        )

        if self.config.save_report:
            report = report or self.report(result)
            report_file = output_dir / f"{_clean_name(name)}_report.json"
            self._save_json_dict(report.model_dump(), report_file)

        logger.info(f"Output saved to: {output_dir}")
        return output_file

    def _save_json_dict(self, data: dict, filepath: Path):
        """Save a dict to JSON file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON: {e}")


def _clean_name(name: Union[str, Path]) -> str:
    stem = Path(name).stem
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in stem)[:50]
