"""
Reference record store for attribution results and engine settings.

SQLite-backed. Attribution rows for a (deal, model) pair are replaced as a
single unit inside one write transaction, so readers never see a partial
set of rows.
"""

import sqlite3
import logging
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from config import DB_PATH, DB_TIMEOUT_SECONDS
from exceptions import DatabaseError
from models import Attribution, AttributionModel, DEFAULT_SETTINGS

logger = logging.getLogger(__name__)


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path or DB_PATH

    def get_conn(self) -> sqlite3.Connection:
        """Get a database connection (a new one per call, for thread safety)."""
        return sqlite3.connect(self.db_path, check_same_thread=False, timeout=DB_TIMEOUT_SECONDS)

    def run_sql(self, sql: str, params: tuple = ()) -> None:
        """Execute a SQL statement that modifies data."""
        conn = self.get_conn()
        try:
            with conn:
                conn.execute(sql, params)
            logger.debug(f"Executed SQL: {sql.strip()[:100]}... with params {params}")
        except sqlite3.Error as e:
            logger.error(f"Error executing SQL: {e}")
            raise DatabaseError(str(e), operation="run_sql", query=sql) from e
        finally:
            conn.close()

    def read_sql(self, sql: str, params: tuple = ()) -> pd.DataFrame:
        """Execute a SQL query and return results as DataFrame."""
        conn = self.get_conn()
        try:
            df = pd.read_sql_query(sql, conn, params=params)
            logger.debug(f"Read SQL: {sql.strip()[:100]}... returned {len(df)} rows")
            return df
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            logger.error(f"Error reading SQL: {e}")
            raise DatabaseError(str(e), operation="read_sql", query=sql) from e
        finally:
            conn.close()

    def init_db(self) -> None:
        """Initialize database schema and default settings."""
        logger.info(f"Initializing database schema at {self.db_path}...")

        self.run_sql("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """)

        self.run_sql("""
        CREATE TABLE IF NOT EXISTS attributions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id TEXT NOT NULL,
            deal_id TEXT NOT NULL,
            partner_id TEXT NOT NULL,
            model TEXT NOT NULL,
            percentage REAL NOT NULL,
            attributed_amount REAL NOT NULL,
            commission_amount REAL NOT NULL,
            applied_rule_name TEXT,
            computed_at TEXT NOT NULL
        );
        """)

        self.run_sql("""
        CREATE INDEX IF NOT EXISTS idx_attributions_deal_model
        ON attributions(deal_id, model);
        """)

        self.run_sql("""
        CREATE INDEX IF NOT EXISTS idx_attributions_org_partner
        ON attributions(organization_id, partner_id);
        """)

        self._ensure_default_settings()
        logger.info("Database schema ready")

    def _ensure_default_settings(self) -> None:
        for key, value in DEFAULT_SETTINGS.items():
            self.run_sql(
                "INSERT OR IGNORE INTO settings(key, value) VALUES (?, ?);",
                (key, value)
            )

    # ========================================================================
    # Settings
    # ========================================================================

    def get_setting(self, key: str, default: str) -> str:
        df = self.read_sql("SELECT value FROM settings WHERE key = ?;", (key,))
        if df.empty:
            return default
        return str(df.loc[0, "value"])

    def set_setting(self, key: str, value: str) -> None:
        self.run_sql("""
        INSERT INTO settings(key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value;
        """, (key, str(value)))
        logger.info(f"Setting updated: {key}={value}")

    def get_settings(self) -> Dict[str, str]:
        df = self.read_sql("SELECT key, value FROM settings;")
        return dict(zip(df["key"], df["value"]))

    # ========================================================================
    # Attribution rows
    # ========================================================================

    def replace_attributions(self, deal_id: str, model: AttributionModel, records: List[Attribution]) -> int:
        """
        Replace every row for (deal_id, model) with `records`, atomically.

        Returns the number of rows inserted.
        """
        model_value = AttributionModel(model).value
        for record in records:
            if record.deal_id != deal_id or record.model != model_value:
                raise DatabaseError(
                    f"Record for ({record.deal_id}, {record.model}) passed to replace ({deal_id}, {model_value})",
                    operation="replace_attributions"
                )

        conn = self.get_conn()
        try:
            with conn:
                conn.execute("BEGIN IMMEDIATE;")
                conn.execute(
                    "DELETE FROM attributions WHERE deal_id = ? AND model = ?;",
                    (deal_id, model_value)
                )
                conn.executemany("""
                INSERT INTO attributions(
                    organization_id, deal_id, partner_id, model, percentage,
                    attributed_amount, commission_amount, applied_rule_name, computed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """, [
                    (
                        r.organization_id, r.deal_id, r.partner_id, model_value, r.percentage,
                        r.attributed_amount, r.commission_amount, r.applied_rule_name,
                        r.computed_at.isoformat()
                    )
                    for r in records
                ])
        except sqlite3.Error as e:
            logger.error(f"Error replacing attributions for {deal_id}/{model_value}: {e}")
            raise DatabaseError(str(e), operation="replace_attributions") from e
        finally:
            conn.close()

        logger.info(f"Replaced attributions for deal {deal_id} ({model_value}): {len(records)} rows")
        return len(records)

    def list_attributions(
        self,
        deal_id: Optional[str] = None,
        partner_id: Optional[str] = None,
        model: Optional[AttributionModel] = None
    ) -> pd.DataFrame:
        """Attribution rows as a DataFrame, optionally filtered."""
        clauses, params = [], []
        if deal_id is not None:
            clauses.append("deal_id = ?")
            params.append(deal_id)
        if partner_id is not None:
            clauses.append("partner_id = ?")
            params.append(partner_id)
        if model is not None:
            clauses.append("model = ?")
            params.append(AttributionModel(model).value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self.read_sql(f"""
            SELECT organization_id, deal_id, partner_id, model, percentage,
                   attributed_amount, commission_amount, applied_rule_name, computed_at
            FROM attributions
            {where}
            ORDER BY deal_id, model, id;
        """, tuple(params))

    def load_attributions(self, organization_id: str) -> List[Attribution]:
        """All attribution rows for an organization, as records for the scorecard engine."""
        df = self.read_sql("""
            SELECT organization_id, deal_id, partner_id, model, percentage,
                   attributed_amount, commission_amount, applied_rule_name, computed_at
            FROM attributions
            WHERE organization_id = ?
            ORDER BY id;
        """, (organization_id,))

        return [
            Attribution(
                organization_id=row["organization_id"],
                deal_id=row["deal_id"],
                partner_id=row["partner_id"],
                model=AttributionModel(row["model"]),
                percentage=float(row["percentage"]),
                attributed_amount=float(row["attributed_amount"]),
                commission_amount=float(row["commission_amount"]),
                computed_at=datetime.fromisoformat(row["computed_at"]),
                applied_rule_name=row["applied_rule_name"],
            )
            for _, row in df.iterrows()
        ]

    def has_attributions(self, deal_id: str) -> bool:
        df = self.read_sql("SELECT COUNT(*) AS n FROM attributions WHERE deal_id = ?;", (deal_id,))
        return int(df.loc[0, "n"]) > 0
