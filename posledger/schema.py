SCHEMA_SQL = r"""
-- Items (products / ingredients / meat types)
CREATE TABLE IF NOT EXISTS items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  code TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  unit TEXT NOT NULL DEFAULT 'KG',
  created_at TEXT NOT NULL
);

-- Batches (one purchased lot of a perishable item)
CREATE TABLE IF NOT EXISTS batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_code TEXT NOT NULL UNIQUE,
  item_id INTEGER NOT NULL,
  acquired_on TEXT NOT NULL,             -- ISO date, FIFO key
  supplier TEXT,

  initial_qty REAL NOT NULL,
  available_qty REAL NOT NULL,
  sold_qty REAL NOT NULL DEFAULT 0,
  loss_qty REAL NOT NULL DEFAULT 0,

  unit_cost REAL NOT NULL DEFAULT 0,
  unit_price REAL NOT NULL DEFAULT 0,

  status TEXT NOT NULL DEFAULT 'Available',   -- Available / Sold Out
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,

  CHECK (initial_qty > 0),
  CHECK (available_qty >= 0 AND available_qty <= initial_qty),
  FOREIGN KEY (item_id) REFERENCES items(id)
);

CREATE INDEX IF NOT EXISTS ix_batches_fifo ON batches(item_id, status, acquired_on, id);

-- Manual corrections to a batch's available quantity (audit trail)
CREATE TABLE IF NOT EXISTS batch_adjustments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_id INTEGER NOT NULL,
  ts TEXT NOT NULL,
  delta REAL NOT NULL,
  before_qty REAL NOT NULL,
  after_qty REAL NOT NULL,
  reason TEXT NOT NULL,
  FOREIGN KEY (batch_id) REFERENCES batches(id)
);

-- Movement ledger (append-only)
CREATE TABLE IF NOT EXISTS movements (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  item_id INTEGER NOT NULL,
  movement_date TEXT NOT NULL,           -- ISO date
  type TEXT NOT NULL,                    -- Purchase / Issue / Return / Adjustment / Loss / OpeningBalance
  delta REAL NOT NULL,
  unit_value REAL,
  batch_id INTEGER,
  reason TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY (item_id) REFERENCES items(id),
  FOREIGN KEY (batch_id) REFERENCES batches(id)
);

CREATE INDEX IF NOT EXISTS ix_movements_item_date ON movements(item_id, movement_date);

-- Weight / quantity losses against a batch
CREATE TABLE IF NOT EXISTS loss_records (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_id INTEGER NOT NULL,
  item_id INTEGER NOT NULL,
  movement_id INTEGER NOT NULL UNIQUE,
  quantity REAL NOT NULL,
  category TEXT NOT NULL,                -- Drying / Bone / Trim / Spoilage / Other
  reason TEXT,
  recorded_by TEXT NOT NULL,
  recorded_at TEXT NOT NULL,
  loss_date TEXT NOT NULL,
  FOREIGN KEY (batch_id) REFERENCES batches(id),
  FOREIGN KEY (item_id) REFERENCES items(id),
  FOREIGN KEY (movement_id) REFERENCES movements(id)
);

CREATE INDEX IF NOT EXISTS ix_loss_records_date ON loss_records(loss_date);

-- Cashier shifts
CREATE TABLE IF NOT EXISTS shifts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  shift_date TEXT NOT NULL,
  shift_type TEXT NOT NULL,              -- Morning / Evening / ...
  opened_at TEXT NOT NULL,
  opened_by TEXT NOT NULL,
  closed_at TEXT,
  closed_by TEXT,

  opening_cash REAL NOT NULL,
  total_sales REAL NOT NULL DEFAULT 0,
  total_expenses REAL NOT NULL DEFAULT 0,
  total_vouchers REAL NOT NULL DEFAULT 0,

  -- set once at close
  closing_cash REAL,
  net_sales REAL,
  expected_cash REAL,
  variance REAL,
  outcome TEXT,                          -- Balanced / Overage / Shortage

  status TEXT NOT NULL DEFAULT 'Open'    -- Open / Closing / Closed
);

CREATE INDEX IF NOT EXISTS ix_shifts_date ON shifts(shift_date, shift_type);

-- Individual sales / expenses / vouchers posted to a shift
CREATE TABLE IF NOT EXISTS shift_entries (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  shift_id INTEGER NOT NULL,
  kind TEXT NOT NULL,                    -- SALE / EXPENSE / VOUCHER
  amount REAL NOT NULL,
  payment_method TEXT,                   -- sales only
  reference TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY (shift_id) REFERENCES shifts(id)
);

CREATE INDEX IF NOT EXISTS ix_shift_entries_shift ON shift_entries(shift_id, kind);

-- Company profile (key/value)
CREATE TABLE IF NOT EXISTS organisation_settings (
  setting_key TEXT PRIMARY KEY,
  setting_value TEXT
);
"""
