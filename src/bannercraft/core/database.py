"""SQLite persistence for prompt templates, designs and design iterations."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import Design, DesignIteration, DesignStatus, PanelPosition, Prompt

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    panel_position TEXT NOT NULL,
    prompt_template TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_prompts_panel_default
ON prompts(panel_position, is_default, is_active);

CREATE TABLE IF NOT EXISTS designs (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    business_name TEXT NOT NULL,
    industry_type TEXT NOT NULL,
    design_text TEXT NOT NULL,
    banner_size TEXT NOT NULL,
    preferences TEXT,
    image_inputs TEXT,
    contacts TEXT,
    top_panel_prompt TEXT,
    bottom_panel_prompt TEXT,
    top_panel_prompt_template_id TEXT,
    bottom_panel_prompt_template_id TEXT,
    status TEXT NOT NULL,
    error_message TEXT,
    generated_top_panel_image_url TEXT,
    generated_bottom_panel_image_url TEXT,
    bucket TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS design_iterations (
    id TEXT PRIMARY KEY,
    design_id TEXT NOT NULL REFERENCES designs(id) ON DELETE CASCADE,
    iteration_number INTEGER NOT NULL,
    top_panel_iteration_notes TEXT,
    bottom_panel_iteration_notes TEXT,
    original_top_panel_prompt TEXT,
    original_bottom_panel_prompt TEXT,
    original_top_panel_prompt_template_id TEXT,
    original_bottom_panel_prompt_template_id TEXT,
    status TEXT NOT NULL,
    error_message TEXT,
    generated_top_panel_image_url TEXT,
    generated_bottom_panel_image_url TEXT,
    bucket TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (design_id, iteration_number)
);
"""

# Columns a prompt update may touch.
_PROMPT_UPDATE_COLUMNS = (
    "name",
    "description",
    "panel_position",
    "prompt_template",
    "version",
    "is_active",
    "is_default",
    "created_by",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json_field(raw: str | None, default: Any) -> Any:
    """Parse a JSON text column, returning *default* for empty or corrupt values."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse JSON column value, using default")
        return default


def _prompt_from_row(row: sqlite3.Row) -> Prompt:
    return Prompt(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        panel_position=PanelPosition(row["panel_position"]),
        prompt_template=row["prompt_template"],
        version=row["version"],
        is_active=bool(row["is_active"]),
        is_default=bool(row["is_default"]),
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _design_from_row(row: sqlite3.Row) -> Design:
    return Design(
        id=row["id"],
        user_id=row["user_id"],
        business_name=row["business_name"],
        industry_type=row["industry_type"],
        design_text=row["design_text"],
        banner_size=row["banner_size"],
        preferences=_load_json_field(row["preferences"], {}),
        image_inputs=_load_json_field(row["image_inputs"], []),
        contacts=_load_json_field(row["contacts"], []),
        top_panel_prompt=row["top_panel_prompt"],
        bottom_panel_prompt=row["bottom_panel_prompt"],
        top_panel_prompt_template_id=row["top_panel_prompt_template_id"],
        bottom_panel_prompt_template_id=row["bottom_panel_prompt_template_id"],
        status=DesignStatus(row["status"]),
        error_message=row["error_message"],
        generated_top_panel_image_url=row["generated_top_panel_image_url"],
        generated_bottom_panel_image_url=row["generated_bottom_panel_image_url"],
        bucket=row["bucket"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _iteration_from_row(row: sqlite3.Row) -> DesignIteration:
    return DesignIteration(
        id=row["id"],
        design_id=row["design_id"],
        iteration_number=row["iteration_number"],
        top_panel_iteration_notes=row["top_panel_iteration_notes"],
        bottom_panel_iteration_notes=row["bottom_panel_iteration_notes"],
        original_top_panel_prompt=row["original_top_panel_prompt"],
        original_bottom_panel_prompt=row["original_bottom_panel_prompt"],
        original_top_panel_prompt_template_id=row["original_top_panel_prompt_template_id"],
        original_bottom_panel_prompt_template_id=row["original_bottom_panel_prompt_template_id"],
        status=DesignStatus(row["status"]),
        error_message=row["error_message"],
        generated_top_panel_image_url=row["generated_top_panel_image_url"],
        generated_bottom_panel_image_url=row["generated_bottom_panel_image_url"],
        bucket=row["bucket"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class DesignDB:
    """Manage prompts, designs and design iterations in SQLite.

    Every public method opens its own short-lived connection, so one
    instance can be shared between request handler threads.
    """

    def __init__(self, db_path: Path):
        """Initialize the database and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info("Initialized design database at %s", self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # ======================================================================
    # Prompt templates
    # ======================================================================

    def create_prompt(
        self,
        *,
        name: str,
        panel_position: PanelPosition | str,
        prompt_template: str,
        description: str | None = None,
        version: int = 1,
        is_active: bool = True,
        is_default: bool = False,
        created_by: str | None = None,
        prompt_id: str | None = None,
    ) -> Prompt:
        """Insert a prompt template.

        Marking the new prompt as default clears the default flag on every
        other prompt for the same panel.
        """
        panel = PanelPosition(panel_position)
        prompt_id = prompt_id or str(uuid.uuid4())
        now = _now()
        with self._connect() as conn:
            if is_default:
                self._clear_defaults(conn, panel, keep_id=prompt_id)
            conn.execute(
                """
                INSERT INTO prompts (
                    id, name, description, panel_position, prompt_template, version,
                    is_active, is_default, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    prompt_id,
                    name,
                    description,
                    panel.value,
                    prompt_template,
                    version,
                    int(is_active),
                    int(is_default),
                    created_by,
                    now,
                    now,
                ),
            )
        logger.info("Created %s prompt %s (%s)", panel.value, prompt_id, name)
        return self.get_prompt(prompt_id)

    def get_prompt(self, prompt_id: str) -> Prompt | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        return _prompt_from_row(row) if row else None

    def list_prompts(
        self,
        *,
        panel_position: PanelPosition | str | None = None,
        is_active: bool | None = None,
        is_default: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Prompt], int]:
        """Return one page of prompts matching the filters, and the total match count."""
        clauses: list[str] = []
        params: list[Any] = []
        if panel_position is not None:
            clauses.append("panel_position = ?")
            params.append(PanelPosition(panel_position).value)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if is_default is not None:
            clauses.append("is_default = ?")
            params.append(int(is_default))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM prompts {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM prompts {where} ORDER BY created_at DESC, name LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        return [_prompt_from_row(row) for row in rows], total

    def update_prompt(self, prompt_id: str, changes: dict[str, Any]) -> Prompt | None:
        """Apply a partial update to a prompt.

        Args:
            prompt_id: Prompt to update
            changes: Column values keyed by column name; unknown keys are ignored

        Returns:
            The updated prompt, or None if it does not exist
        """
        current = self.get_prompt(prompt_id)
        if current is None:
            return None

        updates = {key: value for key, value in changes.items() if key in _PROMPT_UPDATE_COLUMNS}
        if "panel_position" in updates:
            updates["panel_position"] = PanelPosition(updates["panel_position"]).value
        for flag in ("is_active", "is_default"):
            if flag in updates:
                updates[flag] = int(bool(updates[flag]))
        if not updates:
            return current

        panel = PanelPosition(updates.get("panel_position", current.panel_position))
        becomes_default = bool(updates.get("is_default", current.is_default))

        updates["updated_at"] = _now()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._connect() as conn:
            if becomes_default:
                self._clear_defaults(conn, panel, keep_id=prompt_id)
            conn.execute(
                f"UPDATE prompts SET {assignments} WHERE id = ?",
                [*updates.values(), prompt_id],
            )
        logger.info("Updated prompt %s: %s", prompt_id, sorted(updates))
        return self.get_prompt(prompt_id)

    def delete_prompt(self, prompt_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted prompt %s", prompt_id)
        return deleted

    def count_prompts(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM prompts").fetchone()[0]

    def get_default_prompts(self) -> tuple[Prompt | None, Prompt | None]:
        """Return the active default (top, bottom) prompts; either may be None."""
        return (
            self._get_default_prompt(PanelPosition.TOP),
            self._get_default_prompt(PanelPosition.BOTTOM),
        )

    def _get_default_prompt(self, panel: PanelPosition) -> Prompt | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM prompts
                WHERE panel_position = ? AND is_default = 1 AND is_active = 1
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (panel.value,),
            ).fetchone()
        return _prompt_from_row(row) if row else None

    def get_active_prompts_by_ids(self, prompt_ids: list[str]) -> list[Prompt]:
        if not prompt_ids:
            return []
        placeholders = ", ".join("?" for _ in prompt_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM prompts WHERE id IN ({placeholders}) AND is_active = 1",
                prompt_ids,
            ).fetchall()
        return [_prompt_from_row(row) for row in rows]

    def seed_prompts(self, entries: list[dict[str, Any]]) -> int:
        """Insert prompt templates when the prompts table is empty.

        Args:
            entries: Prompt definitions with ``name``, ``panel_position``,
                ``prompt_template`` and optional flags

        Returns:
            Number of prompts inserted (0 if the table already had rows)
        """
        if self.count_prompts() > 0:
            return 0
        for entry in entries:
            self.create_prompt(
                name=entry["name"],
                panel_position=entry["panel_position"],
                prompt_template=entry["prompt_template"],
                description=entry.get("description"),
                version=entry.get("version", 1),
                is_active=entry.get("is_active", True),
                is_default=entry.get("is_default", False),
                created_by=entry.get("created_by", "seed"),
            )
        logger.info("Seeded %d default prompts", len(entries))
        return len(entries)

    @staticmethod
    def _clear_defaults(conn: sqlite3.Connection, panel: PanelPosition, keep_id: str) -> None:
        conn.execute(
            """
            UPDATE prompts SET is_default = 0, updated_at = ?
            WHERE panel_position = ? AND is_default = 1 AND id != ?
            """,
            (_now(), panel.value, keep_id),
        )

    # ======================================================================
    # Designs
    # ======================================================================

    def create_design(
        self,
        request: dict[str, Any],
        top_panel_prompt: str,
        bottom_panel_prompt: str,
        top_panel_prompt_template_id: str | None = None,
        bottom_panel_prompt_template_id: str | None = None,
    ) -> Design:
        """Create a PENDING design from a validated request.

        Args:
            request: Initial design request in its camelCase wire shape
            top_panel_prompt: Rendered top panel prompt
            bottom_panel_prompt: Rendered bottom panel prompt
            top_panel_prompt_template_id: Template the top prompt came from
            bottom_panel_prompt_template_id: Template the bottom prompt came from
        """
        design_id = str(uuid.uuid4())
        now = _now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO designs (
                    id, user_id, business_name, industry_type, design_text, banner_size,
                    preferences, image_inputs, contacts,
                    top_panel_prompt, bottom_panel_prompt,
                    top_panel_prompt_template_id, bottom_panel_prompt_template_id,
                    status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    design_id,
                    request["userId"],
                    request["businessName"],
                    request["industryType"],
                    request["designText"],
                    request["bannerSize"],
                    json.dumps(request.get("preferences") or {}),
                    json.dumps(request.get("imageInputs") or []),
                    json.dumps(request.get("contacts") or []),
                    top_panel_prompt,
                    bottom_panel_prompt,
                    top_panel_prompt_template_id,
                    bottom_panel_prompt_template_id,
                    DesignStatus.PENDING.value,
                    now,
                    now,
                ),
            )
        logger.info("Created design %s for user %s", design_id, request["userId"])
        return self.get_design(design_id)

    def get_design(self, design_id: str) -> Design | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM designs WHERE id = ?", (design_id,)).fetchone()
        return _design_from_row(row) if row else None

    def update_design_status(
        self, design_id: str, status: DesignStatus, error_message: str | None = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE designs SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (DesignStatus(status).value, error_message, _now(), design_id),
            )
        logger.debug("Design %s -> %s", design_id, DesignStatus(status).value)

    def update_design_results(
        self, design_id: str, top_panel_url: str, bottom_panel_url: str, bucket: str
    ) -> None:
        """Record generated panel URLs and mark the design COMPLETED."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE designs SET
                    generated_top_panel_image_url = ?,
                    generated_bottom_panel_image_url = ?,
                    bucket = ?,
                    status = ?,
                    error_message = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    top_panel_url,
                    bottom_panel_url,
                    bucket,
                    DesignStatus.COMPLETED.value,
                    _now(),
                    design_id,
                ),
            )

    # ======================================================================
    # Design iterations
    # ======================================================================

    def get_next_iteration_number(self, design_id: str) -> int:
        with self._connect() as conn:
            highest = conn.execute(
                "SELECT MAX(iteration_number) FROM design_iterations WHERE design_id = ?",
                (design_id,),
            ).fetchone()[0]
        return (highest or 0) + 1

    def create_iteration(
        self,
        design: Design,
        top_panel_iteration_notes: str | None = None,
        bottom_panel_iteration_notes: str | None = None,
    ) -> DesignIteration:
        """Create a PENDING iteration, copying the design's prompts onto it.

        The iteration number is assigned inside the INSERT itself, so
        concurrent requests for one design always get distinct, contiguous
        numbers.
        """
        iteration_id = str(uuid.uuid4())
        now = _now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO design_iterations (
                    id, design_id, iteration_number,
                    top_panel_iteration_notes, bottom_panel_iteration_notes,
                    original_top_panel_prompt, original_bottom_panel_prompt,
                    original_top_panel_prompt_template_id,
                    original_bottom_panel_prompt_template_id,
                    status, created_at, updated_at
                )
                SELECT ?, ?, COALESCE(MAX(iteration_number), 0) + 1,
                       ?, ?, ?, ?, ?, ?, ?, ?, ?
                FROM design_iterations
                WHERE design_id = ?
                """,
                (
                    iteration_id,
                    design.id,
                    top_panel_iteration_notes or None,
                    bottom_panel_iteration_notes or None,
                    design.top_panel_prompt,
                    design.bottom_panel_prompt,
                    design.top_panel_prompt_template_id,
                    design.bottom_panel_prompt_template_id,
                    DesignStatus.PENDING.value,
                    now,
                    now,
                    design.id,
                ),
            )
        iteration = self.get_iteration(iteration_id)
        logger.info(
            "Created iteration %s (#%d) for design %s",
            iteration_id,
            iteration.iteration_number,
            design.id,
        )
        return iteration

    def get_iteration(self, iteration_id: str) -> DesignIteration | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM design_iterations WHERE id = ?", (iteration_id,)
            ).fetchone()
        return _iteration_from_row(row) if row else None

    def update_iteration_status(
        self, iteration_id: str, status: DesignStatus, error_message: str | None = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE design_iterations SET status = ?, error_message = ?, updated_at = ?
                WHERE id = ?
                """,
                (DesignStatus(status).value, error_message, _now(), iteration_id),
            )
        logger.debug("Iteration %s -> %s", iteration_id, DesignStatus(status).value)

    def update_iteration_results(
        self,
        iteration_id: str,
        top_panel_url: str | None,
        bottom_panel_url: str | None,
        bucket: str,
    ) -> None:
        """Record regenerated panel URLs and mark the iteration COMPLETED.

        Only panels that were actually regenerated (non-None URL) are written.
        """
        updates: dict[str, Any] = {
            "bucket": bucket,
            "status": DesignStatus.COMPLETED.value,
            "error_message": None,
            "updated_at": _now(),
        }
        if top_panel_url:
            updates["generated_top_panel_image_url"] = top_panel_url
        if bottom_panel_url:
            updates["generated_bottom_panel_image_url"] = bottom_panel_url

        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE design_iterations SET {assignments} WHERE id = ?",
                [*updates.values(), iteration_id],
            )

    def list_iterations(self, design_id: str) -> list[DesignIteration]:
        """Return all iterations of a design ordered by iteration number."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM design_iterations
                WHERE design_id = ?
                ORDER BY iteration_number ASC
                """,
                (design_id,),
            ).fetchall()
        return [_iteration_from_row(row) for row in rows]
