from __future__ import annotations

import calendar
import hashlib
import hmac
import secrets
import shutil
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional

from acai.domain.diffing import ChildDiff
from acai.domain.models import (
    SYSTEM_EXPENSE_TYPES,
    ChannelIcon,
    CostItem,
    Expense,
    ExpenseStatus,
    ExpenseType,
    MonthlyClosing,
    Product,
    Recipe,
    SaleHeader,
    SaleLine,
    SalesChannel,
    StoreConfig,
    Supplier,
    User,
)

DEFAULT_MEI_CEILING = Decimal("81000")


def _money(value) -> str:
    return str(Decimal(value))


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_indexes),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                failed_attempts INTEGER NOT NULL DEFAULT 0,
                locked_until TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS store_config (
                user_id INTEGER PRIMARY KEY,
                store_name TEXT NOT NULL,
                mei_ceiling TEXT NOT NULL CHECK(CAST(mei_ceiling AS REAL) > 0),
                logo_url TEXT,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                unit_cost TEXT NOT NULL CHECK(CAST(unit_cost AS REAL) >= 0),
                sale_price TEXT NOT NULL CHECK(CAST(sale_price AS REAL) > 0),
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS suppliers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                contact_name TEXT,
                phone TEXT,
                email TEXT,
                address TEXT,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales_channels (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                fee_percent TEXT NOT NULL CHECK(CAST(fee_percent AS REAL) >= 0),
                icon TEXT NOT NULL DEFAULT 'Store' CHECK(icon IN ('Instagram','Truck','Phone','Store')),
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS recipes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                image_url TEXT,
                total_cost TEXT NOT NULL DEFAULT '0',
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS cost_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recipe_id INTEGER NOT NULL,
                supplier_id INTEGER,
                name TEXT NOT NULL,
                amount_paid TEXT NOT NULL CHECK(CAST(amount_paid AS REAL) > 0),
                yield_qty INTEGER NOT NULL CHECK(yield_qty > 0),
                FOREIGN KEY(recipe_id) REFERENCES recipes(id) ON DELETE CASCADE,
                FOREIGN KEY(supplier_id) REFERENCES suppliers(id) ON DELETE RESTRICT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                channel_id INTEGER,
                shipping TEXT NOT NULL DEFAULT '0' CHECK(CAST(shipping AS REAL) >= 0),
                tax_shipping INTEGER NOT NULL DEFAULT 0 CHECK(tax_shipping IN (0,1)),
                subtotal TEXT NOT NULL,
                channel_fee TEXT NOT NULL,
                gross_revenue TEXT NOT NULL,
                net_profit TEXT NOT NULL,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY(channel_id) REFERENCES sales_channels(id) ON DELETE SET NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_id INTEGER,
                product_name TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_price TEXT NOT NULL CHECK(CAST(unit_price AS REAL) >= 0),
                unit_cost TEXT NOT NULL CHECK(CAST(unit_cost AS REAL) >= 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE SET NULL,
                UNIQUE(sale_id, product_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                emoji TEXT NOT NULL,
                system_key TEXT,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                UNIQUE(user_id, system_key)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                description TEXT NOT NULL,
                amount TEXT NOT NULL CHECK(CAST(amount AS REAL) > 0),
                expense_type_id INTEGER,
                date TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('pending','paid')),
                recurring INTEGER NOT NULL DEFAULT 0 CHECK(recurring IN (0,1)),
                due_day INTEGER CHECK(due_day BETWEEN 1 AND 31),
                sale_id INTEGER,
                sale_role TEXT CHECK(sale_role IN ('cogs','channel_fee')),
                template_id INTEGER,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY(expense_type_id) REFERENCES expense_types(id) ON DELETE SET NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(template_id) REFERENCES expenses(id) ON DELETE SET NULL,
                CHECK((recurring = 1) = (due_day IS NOT NULL)),
                UNIQUE(sale_id, sale_role)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS monthly_closings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                year INTEGER NOT NULL,
                month INTEGER NOT NULL CHECK(month BETWEEN 1 AND 12),
                revenue TEXT NOT NULL DEFAULT '0',
                transfer TEXT NOT NULL DEFAULT '0' CHECK(CAST(transfer AS REAL) >= 0),
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                UNIQUE(user_id, year, month)
            )
            """
        )

    def _migration_v2_indexes(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS ix_sales_user_created ON sales(user_id, created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_expenses_user_date ON expenses(user_id, date)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_cost_items_supplier ON cost_items(supplier_id)")

    # ---------- Users ----------
    def create_user_with_config(self, email: str, password: str, store_name: str, mei_ceiling: Decimal = DEFAULT_MEI_CEILING) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                "INSERT INTO users (email, password) VALUES (?, ?)",
                (email, self._hash_password(password)),
            )
            user_id = int(cur.lastrowid)
            cur.execute(
                "INSERT INTO store_config (user_id, store_name, mei_ceiling) VALUES (?, ?, ?)",
                (user_id, store_name, _money(mei_ceiling)),
            )
            conn.commit()
            return user_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, email, active FROM users WHERE id=? AND active=1", (int(user_id),))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return User(id=int(r[0]), email=str(r[1]), active=int(r[2]))

    def _get_user_row(self, cur: sqlite3.Cursor, email: str):
        cur.execute(
            """
            SELECT id, email, active, password, failed_attempts, locked_until
            FROM users
            WHERE active=1 AND email=?
            """,
            (email,),
        )
        return cur.fetchone()

    def get_user_security_state(self, email: str) -> tuple[int, Optional[str]] | None:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, email)
        conn.close()
        if not row:
            return None
        return int(row[4]), (str(row[5]) if row[5] is not None else None)

    def record_login_failure(self, email: str, max_attempts: int, lockout_seconds: int) -> tuple[int, Optional[str]]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, email)
        if not row:
            conn.close()
            return 0, None

        attempts = int(row[4]) + 1
        locked_until = None
        if attempts >= int(max_attempts):
            attempts = 0
            cur.execute(
                "UPDATE users SET failed_attempts=?, locked_until=datetime('now', ?) WHERE id=?",
                (attempts, f"+{int(lockout_seconds)} seconds", int(row[0])),
            )
            cur.execute("SELECT locked_until FROM users WHERE id=?", (int(row[0]),))
            locked_until = str(cur.fetchone()[0])
        else:
            cur.execute("UPDATE users SET failed_attempts=? WHERE id=?", (attempts, int(row[0])))
        conn.commit()
        conn.close()
        return attempts, locked_until

    def clear_login_guard(self, user_id: int) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE users SET failed_attempts=0, locked_until=NULL WHERE id=?", (int(user_id),))
        conn.commit()
        conn.close()

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, email)
        conn.close()
        if not row or not self._verify_password(str(row[3]), password):
            return None
        return User(id=int(row[0]), email=str(row[1]), active=int(row[2]))

    # ---------- Store config ----------
    def get_store_config(self, user_id: int) -> Optional[StoreConfig]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT user_id, store_name, mei_ceiling, logo_url FROM store_config WHERE user_id=?", (int(user_id),))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return StoreConfig(user_id=int(r[0]), store_name=str(r[1]), mei_ceiling=Decimal(r[2]), logo_url=r[3])

    def update_store_config(self, user_id: int, store_name: str, mei_ceiling: Decimal) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE store_config SET store_name=?, mei_ceiling=? WHERE user_id=?",
            (store_name, _money(mei_ceiling), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def set_logo_url(self, user_id: int, logo_url: Optional[str]) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE store_config SET logo_url=? WHERE user_id=?", (logo_url, int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Products ----------
    def add_product(self, user_id: int, name: str, unit_cost: Decimal, sale_price: Decimal) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO products (user_id, name, unit_cost, sale_price) VALUES (?, ?, ?, ?)",
            (int(user_id), name, _money(unit_cost), _money(sale_price)),
        )
        pid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return pid

    def update_product(self, user_id: int, product_id: int, name: str, unit_cost: Decimal, sale_price: Decimal) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET name=?, unit_cost=?, sale_price=? WHERE id=? AND user_id=?",
            (name, _money(unit_cost), _money(sale_price), int(product_id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def delete_product(self, user_id: int, product_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM products WHERE id=? AND user_id=?", (int(product_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def get_product(self, user_id: int, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, unit_cost, sale_price FROM products WHERE id=? AND user_id=?",
            (int(product_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return Product(id=int(r[0]), name=str(r[1]), unit_cost=Decimal(r[2]), sale_price=Decimal(r[3]))

    def list_products(self, user_id: int) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, unit_cost, sale_price FROM products WHERE user_id=? ORDER BY name",
            (int(user_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [Product(id=int(r[0]), name=str(r[1]), unit_cost=Decimal(r[2]), sale_price=Decimal(r[3])) for r in rows]

    # ---------- Suppliers ----------
    def add_supplier(self, user_id: int, supplier: Supplier) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO suppliers (user_id, name, contact_name, phone, email, address)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(user_id), supplier.name, supplier.contact_name, supplier.phone, supplier.email, supplier.address),
        )
        sid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return sid

    def update_supplier(self, user_id: int, supplier: Supplier) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE suppliers
            SET name=?, contact_name=?, phone=?, email=?, address=?
            WHERE id=? AND user_id=?
            """,
            (supplier.name, supplier.contact_name, supplier.phone, supplier.email, supplier.address, int(supplier.id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def count_supplier_references(self, supplier_id: int) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM cost_items WHERE supplier_id=?", (int(supplier_id),))
        count = int(cur.fetchone()[0])
        conn.close()
        return count

    def delete_supplier(self, user_id: int, supplier_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("DELETE FROM suppliers WHERE id=? AND user_id=?", (int(supplier_id), int(user_id)))
            changed = cur.rowcount > 0
            conn.commit()
            return bool(changed)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_supplier(self, user_id: int, supplier_id: int) -> Optional[Supplier]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, contact_name, phone, email, address FROM suppliers WHERE id=? AND user_id=?",
            (int(supplier_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        return Supplier(*r) if r else None

    def list_suppliers(self, user_id: int) -> list[Supplier]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, contact_name, phone, email, address FROM suppliers WHERE user_id=? ORDER BY name",
            (int(user_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [Supplier(*r) for r in rows]

    # ---------- Sales channels ----------
    def add_channel(self, user_id: int, name: str, fee_percent: Decimal, icon: ChannelIcon) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO sales_channels (user_id, name, fee_percent, icon) VALUES (?, ?, ?, ?)",
            (int(user_id), name, _money(fee_percent), icon.value),
        )
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def update_channel(self, user_id: int, channel_id: int, name: str, fee_percent: Decimal, icon: ChannelIcon) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE sales_channels SET name=?, fee_percent=?, icon=? WHERE id=? AND user_id=?",
            (name, _money(fee_percent), icon.value, int(channel_id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def delete_channel(self, user_id: int, channel_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM sales_channels WHERE id=? AND user_id=?", (int(channel_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def get_channel(self, user_id: int, channel_id: int) -> Optional[SalesChannel]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, fee_percent, icon FROM sales_channels WHERE id=? AND user_id=?",
            (int(channel_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return SalesChannel(id=int(r[0]), name=str(r[1]), fee_percent=Decimal(r[2]), icon=ChannelIcon(r[3]))

    def list_channels(self, user_id: int) -> list[SalesChannel]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, fee_percent, icon FROM sales_channels WHERE user_id=? ORDER BY name",
            (int(user_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [SalesChannel(id=int(r[0]), name=str(r[1]), fee_percent=Decimal(r[2]), icon=ChannelIcon(r[3])) for r in rows]

    # ---------- Recipes ----------
    def save_recipe_with_items(
        self,
        user_id: int,
        recipe_id: Optional[int],
        name: str,
        image_url: Optional[str],
        total_cost: Decimal,
        items: ChildDiff[CostItem],
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            if recipe_id is None:
                cur.execute(
                    "INSERT INTO recipes (user_id, name, image_url, total_cost) VALUES (?, ?, ?, ?)",
                    (int(user_id), name, image_url, _money(total_cost)),
                )
                recipe_id = int(cur.lastrowid)
            else:
                cur.execute(
                    "UPDATE recipes SET name=?, image_url=?, total_cost=? WHERE id=? AND user_id=?",
                    (name, image_url, _money(total_cost), int(recipe_id), int(user_id)),
                )
                if cur.rowcount == 0:
                    raise ValueError(f"Recipe not found: {recipe_id}")

            for item in items.removed:
                cur.execute("DELETE FROM cost_items WHERE id=? AND recipe_id=?", (int(item.id), int(recipe_id)))
            for _old, item in items.changed:
                cur.execute(
                    """
                    UPDATE cost_items
                    SET name=?, supplier_id=?, amount_paid=?, yield_qty=?
                    WHERE id=? AND recipe_id=?
                    """,
                    (item.name, item.supplier_id, _money(item.amount_paid), int(item.yield_qty), int(item.id), int(recipe_id)),
                )
            for item in items.added:
                cur.execute(
                    """
                    INSERT INTO cost_items (recipe_id, supplier_id, name, amount_paid, yield_qty)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (int(recipe_id), item.supplier_id, item.name, _money(item.amount_paid), int(item.yield_qty)),
                )

            conn.commit()
            return int(recipe_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_recipe(self, user_id: int, recipe_id: int) -> Optional[Recipe]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, total_cost, image_url FROM recipes WHERE id=? AND user_id=?",
            (int(recipe_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return Recipe(id=int(r[0]), name=str(r[1]), total_cost=Decimal(r[2]), image_url=r[3])

    def list_recipes(self, user_id: int) -> list[Recipe]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, total_cost, image_url FROM recipes WHERE user_id=? ORDER BY name",
            (int(user_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [Recipe(id=int(r[0]), name=str(r[1]), total_cost=Decimal(r[2]), image_url=r[3]) for r in rows]

    def cost_items_for_recipe(self, recipe_id: int) -> list[CostItem]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT ci.id, ci.name, ci.amount_paid, ci.yield_qty, ci.supplier_id, s.name
            FROM cost_items ci
            LEFT JOIN suppliers s ON s.id = ci.supplier_id
            WHERE ci.recipe_id = ?
            ORDER BY ci.id
            """,
            (int(recipe_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            CostItem(
                id=int(r[0]),
                name=str(r[1]),
                amount_paid=Decimal(r[2]),
                yield_qty=int(r[3]),
                supplier_id=(int(r[4]) if r[4] is not None else None),
                supplier_name=(str(r[5]) if r[5] is not None else None),
            )
            for r in rows
        ]

    def delete_recipe(self, user_id: int, recipe_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM recipes WHERE id=? AND user_id=?", (int(recipe_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Sales ----------
    def create_sale_with_items(
        self,
        user_id: int,
        created_at: str,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        totals: dict,
        items: Iterable,
        sale_expenses: dict[str, Decimal],
    ) -> int:
        """Write a sale, its lines and its derived expenses in one transaction.

        totals: {subtotal, channel_fee, gross_revenue, net_profit}
        sale_expenses: {role: amount} for the roles in SYSTEM_EXPENSE_TYPES
        """
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                """
                INSERT INTO sales (
                    user_id, created_at, channel_id, shipping, tax_shipping,
                    subtotal, channel_fee, gross_revenue, net_profit
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(user_id),
                    created_at,
                    channel_id,
                    _money(shipping),
                    1 if tax_shipping else 0,
                    _money(totals["subtotal"]),
                    _money(totals["channel_fee"]),
                    _money(totals["gross_revenue"]),
                    _money(totals["net_profit"]),
                ),
            )
            sale_id = int(cur.lastrowid)

            for it in items:
                self._insert_sale_item(cur, sale_id, it)

            expense_date = created_at[:10]
            for role, amount in sale_expenses.items():
                if amount > 0:
                    self._insert_sale_expense(cur, user_id, sale_id, role, amount, expense_date)

            conn.commit()
            return sale_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_sale_with_items(
        self,
        user_id: int,
        sale_id: int,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        totals: dict,
        items: ChildDiff,
        sale_expenses: dict[str, Decimal],
    ) -> None:
        """Derived expenses that appear with this edit are dated on the sale date."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                """
                UPDATE sales
                SET channel_id=?, shipping=?, tax_shipping=?,
                    subtotal=?, channel_fee=?, gross_revenue=?, net_profit=?
                WHERE id=? AND user_id=?
                """,
                (
                    channel_id,
                    _money(shipping),
                    1 if tax_shipping else 0,
                    _money(totals["subtotal"]),
                    _money(totals["channel_fee"]),
                    _money(totals["gross_revenue"]),
                    _money(totals["net_profit"]),
                    int(sale_id),
                    int(user_id),
                ),
            )
            if cur.rowcount == 0:
                raise ValueError(f"Sale not found: {sale_id}")
            cur.execute("SELECT created_at FROM sales WHERE id=?", (int(sale_id),))
            expense_date = str(cur.fetchone()[0])[:10]

            for line in items.removed:
                cur.execute("DELETE FROM sale_items WHERE id=? AND sale_id=?", (int(line.id), int(sale_id)))
            for old, line in items.changed:
                cur.execute(
                    "UPDATE sale_items SET quantity=?, unit_price=?, unit_cost=? WHERE id=? AND sale_id=?",
                    (int(line.quantity), _money(line.unit_price), _money(line.unit_cost), int(old.id), int(sale_id)),
                )
            for line in items.added:
                self._insert_sale_item(cur, int(sale_id), line)

            for role, amount in sale_expenses.items():
                cur.execute(
                    "SELECT id FROM expenses WHERE sale_id=? AND sale_role=?",
                    (int(sale_id), role),
                )
                row = cur.fetchone()
                if amount > 0 and row:
                    cur.execute("UPDATE expenses SET amount=? WHERE id=?", (_money(amount), int(row[0])))
                elif amount > 0:
                    self._insert_sale_expense(cur, user_id, int(sale_id), role, amount, expense_date)
                elif row:
                    cur.execute("DELETE FROM expenses WHERE id=?", (int(row[0]),))

            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _insert_sale_item(self, cur: sqlite3.Cursor, sale_id: int, line) -> None:
        cur.execute(
            """
            INSERT INTO sale_items (sale_id, product_id, product_name, quantity, unit_price, unit_cost)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                int(sale_id),
                line.product_id,
                line.product_name,
                int(line.quantity),
                _money(line.unit_price),
                _money(line.unit_cost),
            ),
        )

    def _insert_sale_expense(self, cur: sqlite3.Cursor, user_id: int, sale_id: int, role: str, amount: Decimal, date_iso: str) -> None:
        type_id = self._ensure_system_type(cur, user_id, role)
        name, _emoji = SYSTEM_EXPENSE_TYPES[role]
        cur.execute(
            """
            INSERT INTO expenses (user_id, description, amount, expense_type_id, date, status, recurring, sale_id, sale_role)
            VALUES (?, ?, ?, ?, ?, 'paid', 0, ?, ?)
            """,
            (int(user_id), f"{name} - sale #{sale_id}", _money(amount), type_id, date_iso, int(sale_id), role),
        )

    def _ensure_system_type(self, cur: sqlite3.Cursor, user_id: int, role: str) -> int:
        cur.execute(
            "SELECT id FROM expense_types WHERE user_id=? AND system_key=?",
            (int(user_id), role),
        )
        row = cur.fetchone()
        if row:
            return int(row[0])
        name, emoji = SYSTEM_EXPENSE_TYPES[role]
        cur.execute(
            "INSERT INTO expense_types (user_id, name, emoji, system_key) VALUES (?, ?, ?, ?)",
            (int(user_id), name, emoji, role),
        )
        return int(cur.lastrowid)

    def delete_sale(self, user_id: int, sale_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM sales WHERE id=? AND user_id=?", (int(sale_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    _SALE_COLUMNS = """
        s.id, s.created_at, s.channel_id, c.name, s.shipping, s.tax_shipping,
        s.subtotal, s.channel_fee, s.gross_revenue, s.net_profit
    """

    @staticmethod
    def _sale_from_row(r) -> SaleHeader:
        return SaleHeader(
            id=int(r[0]),
            created_at=str(r[1]),
            channel_id=(int(r[2]) if r[2] is not None else None),
            channel_name=(str(r[3]) if r[3] is not None else None),
            shipping=Decimal(r[4]),
            tax_shipping=bool(r[5]),
            subtotal=Decimal(r[6]),
            channel_fee=Decimal(r[7]),
            gross_revenue=Decimal(r[8]),
            net_profit=Decimal(r[9]),
        )

    def get_sale_header(self, user_id: int, sale_id: int) -> Optional[SaleHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {self._SALE_COLUMNS}
            FROM sales s
            LEFT JOIN sales_channels c ON c.id = s.channel_id
            WHERE s.id = ? AND s.user_id = ?
            """,
            (int(sale_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._sale_from_row(r) if r else None

    def list_sales_between(self, user_id: int, start_iso: str, end_iso: str) -> list[SaleHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {self._SALE_COLUMNS}
            FROM sales s
            LEFT JOIN sales_channels c ON c.id = s.channel_id
            WHERE s.user_id = ? AND s.created_at >= ? AND s.created_at < ?
            ORDER BY s.created_at DESC, s.id DESC
            """,
            (int(user_id), start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._sale_from_row(r) for r in rows]

    def list_recent_sales(self, user_id: int, limit: int = 50) -> list[SaleHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {self._SALE_COLUMNS}
            FROM sales s
            LEFT JOIN sales_channels c ON c.id = s.channel_id
            WHERE s.user_id = ?
            ORDER BY s.created_at DESC, s.id DESC
            LIMIT ?
            """,
            (int(user_id), int(limit)),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._sale_from_row(r) for r in rows]

    def gross_revenue_between(self, user_id: int, start_iso: str, end_iso: str) -> list[Decimal]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT gross_revenue FROM sales WHERE user_id=? AND created_at >= ? AND created_at < ?",
            (int(user_id), start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [Decimal(r[0]) for r in rows]

    def sale_items_for_sale(self, sale_id: int) -> list[SaleLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, product_id, product_name, quantity, unit_price, unit_cost
            FROM sale_items
            WHERE sale_id = ?
            ORDER BY id
            """,
            (int(sale_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            SaleLine(
                id=int(r[0]),
                product_id=(int(r[1]) if r[1] is not None else None),
                product_name=str(r[2]),
                quantity=int(r[3]),
                unit_price=Decimal(r[4]),
                unit_cost=Decimal(r[5]),
            )
            for r in rows
        ]

    def sale_lines_between(self, user_id: int, start_iso: str, end_iso: str) -> list[SaleLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT si.id, si.product_id, si.product_name, si.quantity, si.unit_price, si.unit_cost
            FROM sale_items si
            JOIN sales s ON s.id = si.sale_id
            WHERE s.user_id = ? AND s.created_at >= ? AND s.created_at < ?
            """,
            (int(user_id), start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            SaleLine(
                id=int(r[0]),
                product_id=(int(r[1]) if r[1] is not None else None),
                product_name=str(r[2]),
                quantity=int(r[3]),
                unit_price=Decimal(r[4]),
                unit_cost=Decimal(r[5]),
            )
            for r in rows
        ]

    # ---------- Expense types ----------
    def add_expense_type(self, user_id: int, name: str, emoji: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO expense_types (user_id, name, emoji) VALUES (?, ?, ?)",
            (int(user_id), name, emoji),
        )
        tid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return tid

    def update_expense_type(self, user_id: int, type_id: int, name: str, emoji: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE expense_types SET name=?, emoji=? WHERE id=? AND user_id=?",
            (name, emoji, int(type_id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def delete_expense_type(self, user_id: int, type_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM expense_types WHERE id=? AND user_id=?", (int(type_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def ensure_system_expense_type(self, user_id: int, role: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            type_id = self._ensure_system_type(cur, user_id, role)
            conn.commit()
            return type_id
        finally:
            conn.close()

    def get_expense_type(self, user_id: int, type_id: int) -> Optional[ExpenseType]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, emoji, system_key FROM expense_types WHERE id=? AND user_id=?",
            (int(type_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        return ExpenseType(*r) if r else None

    def list_expense_types(self, user_id: int) -> list[ExpenseType]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, name, emoji, system_key FROM expense_types WHERE user_id=? ORDER BY name",
            (int(user_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [ExpenseType(*r) for r in rows]

    # ---------- Expenses ----------
    def add_expense(
        self,
        user_id: int,
        description: str,
        amount: Decimal,
        expense_type_id: Optional[int],
        date_iso: str,
        status: ExpenseStatus,
        recurring: bool,
        due_day: Optional[int],
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO expenses (user_id, description, amount, expense_type_id, date, status, recurring, due_day)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(user_id),
                description,
                _money(amount),
                expense_type_id,
                date_iso,
                status.value,
                1 if recurring else 0,
                due_day,
            ),
        )
        eid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return eid

    def set_expense_status(self, user_id: int, expense_id: int, status: ExpenseStatus) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE expenses SET status=? WHERE id=? AND user_id=?",
            (status.value, int(expense_id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def delete_expense(self, user_id: int, expense_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM expenses WHERE id=? AND user_id=?", (int(expense_id), int(user_id)))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    _EXPENSE_COLUMNS = """
        e.id, e.description, e.amount, e.expense_type_id, e.date, e.status,
        e.recurring, e.due_day, e.sale_id, e.template_id, t.name, t.emoji
    """

    @staticmethod
    def _expense_from_row(r) -> Expense:
        return Expense(
            id=int(r[0]),
            description=str(r[1]),
            amount=Decimal(r[2]),
            expense_type_id=(int(r[3]) if r[3] is not None else None),
            date=str(r[4]),
            status=ExpenseStatus(r[5]),
            recurring=bool(r[6]),
            due_day=(int(r[7]) if r[7] is not None else None),
            sale_id=(int(r[8]) if r[8] is not None else None),
            template_id=(int(r[9]) if r[9] is not None else None),
            expense_type_name=r[10],
            expense_type_emoji=r[11],
        )

    def get_expense(self, user_id: int, expense_id: int) -> Optional[Expense]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {self._EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_types t ON t.id = e.expense_type_id
            WHERE e.id = ? AND e.user_id = ?
            """,
            (int(expense_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._expense_from_row(r) if r else None

    def list_expenses(
        self,
        user_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        expense_type_id: Optional[int] = None,
        recurring: bool = False,
    ) -> list[Expense]:
        """Expenses newest first; dates are an inclusive start and an exclusive end."""
        sql = f"""
            SELECT {self._EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_types t ON t.id = e.expense_type_id
            WHERE e.user_id = ? AND e.recurring = ?
        """
        params: list = [int(user_id), 1 if recurring else 0]
        if start_date:
            sql += " AND e.date >= ?"
            params.append(start_date)
        if end_date:
            sql += " AND e.date < ?"
            params.append(end_date)
        if expense_type_id is not None:
            sql += " AND e.expense_type_id = ?"
            params.append(int(expense_type_id))
        sql += " ORDER BY e.date DESC, e.id DESC"

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [self._expense_from_row(r) for r in rows]

    def expenses_for_sale(self, sale_id: int) -> list[Expense]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {self._EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_types t ON t.id = e.expense_type_id
            WHERE e.sale_id = ?
            ORDER BY e.id
            """,
            (int(sale_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._expense_from_row(r) for r in rows]

    def generate_monthly_recurring_expenses(self, user_id: int, month: int, year: int) -> int:
        """Materialize each recurring template once for the given month.

        Instances are pending, non-recurring, dated on the template's due day
        (clamped to the month's last day) and linked back via template_id.
        """
        last_day = calendar.monthrange(int(year), int(month))[1]
        prefix = f"{int(year):04d}-{int(month):02d}-"

        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                """
                SELECT id, description, amount, expense_type_id, due_day
                FROM expenses
                WHERE user_id = ? AND recurring = 1
                ORDER BY id
                """,
                (int(user_id),),
            )
            templates = cur.fetchall()

            created = 0
            for tpl_id, description, amount, type_id, due_day in templates:
                cur.execute(
                    "SELECT 1 FROM expenses WHERE template_id = ? AND date LIKE ?",
                    (int(tpl_id), prefix + "%"),
                )
                if cur.fetchone():
                    continue
                day = min(int(due_day), last_day)
                cur.execute(
                    """
                    INSERT INTO expenses (user_id, description, amount, expense_type_id, date, status, recurring, template_id)
                    VALUES (?, ?, ?, ?, ?, 'pending', 0, ?)
                    """,
                    (int(user_id), description, amount, type_id, date(int(year), int(month), day).isoformat(), int(tpl_id)),
                )
                created += 1

            conn.commit()
            return created
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ---------- Monthly closings ----------
    def get_last_closed_month(self, user_id: int) -> Optional[tuple[int, int]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT year, month FROM monthly_closings WHERE user_id=? ORDER BY year DESC, month DESC LIMIT 1",
            (int(user_id),),
        )
        r = cur.fetchone()
        conn.close()
        return (int(r[0]), int(r[1])) if r else None

    def upsert_monthly_closing(self, user_id: int, year: int, month: int, revenue: Decimal) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO monthly_closings (user_id, year, month, revenue)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, year, month) DO UPDATE SET revenue=excluded.revenue
            """,
            (int(user_id), int(year), int(month), _money(revenue)),
        )
        conn.commit()
        conn.close()

    @staticmethod
    def _closing_from_row(r) -> MonthlyClosing:
        return MonthlyClosing(id=int(r[0]), year=int(r[1]), month=int(r[2]), revenue=Decimal(r[3]), transfer=Decimal(r[4]))

    def list_closings(self, user_id: int, year: Optional[int] = None) -> list[MonthlyClosing]:
        sql = "SELECT id, year, month, revenue, transfer FROM monthly_closings WHERE user_id=?"
        params: list = [int(user_id)]
        if year is not None:
            sql += " AND year=?"
            params.append(int(year))
        sql += " ORDER BY year DESC, month DESC"

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [self._closing_from_row(r) for r in rows]

    def get_closing(self, user_id: int, closing_id: int) -> Optional[MonthlyClosing]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, year, month, revenue, transfer FROM monthly_closings WHERE id=? AND user_id=?",
            (int(closing_id), int(user_id)),
        )
        r = cur.fetchone()
        conn.close()
        return self._closing_from_row(r) if r else None

    def set_closing_transfer(self, user_id: int, closing_id: int, amount: Decimal) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE monthly_closings SET transfer=? WHERE id=? AND user_id=?",
            (_money(amount), int(closing_id), int(user_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    @staticmethod
    def _hash_password(password: str, *, rounds: int = 200_000, salt: str | None = None) -> str:
        salt = salt or secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), rounds).hex()
        return f"pbkdf2_sha256${rounds}${salt}${digest}"

    @staticmethod
    def _verify_password(stored: str, provided: str) -> bool:
        if not stored.startswith("pbkdf2_sha256$"):
            return False
        try:
            _algo, rounds_s, salt, digest = stored.split("$", 3)
            candidate = hashlib.pbkdf2_hmac(
                "sha256",
                provided.encode("utf-8"),
                bytes.fromhex(salt),
                int(rounds_s),
            ).hex()
        except ValueError:
            return False
        return hmac.compare_digest(candidate, digest)
