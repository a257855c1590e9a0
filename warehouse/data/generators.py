"""
Synthetic Extract Generator

Generates CRM and ERP extracts shaped like the real source systems, including
the defects the cleansing layer has to repair:
- Duplicate customer records and rows without a customer id
- Padded names and lowercase or unknown codes
- Multi-version products, null costs and missing product lines
- Zero and malformed integer date keys
- Inconsistent sales amounts and prices
- Prefixed and hyphenated ERP identifiers, future birthdates, raw country codes
- Sales lines pointing at unknown products or customers
"""

import random
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import polars as pl
from faker import Faker

from warehouse.config import get_settings
from warehouse.storage.models import RAW_SCHEMAS, Table


# =============================================================================
# CONFIGURATION
# =============================================================================

# (category_id, category, subcategory, maintenance)
CATEGORIES = [
    ("AC_BR", "Accessories", "Bike Racks", "Yes"),
    ("AC_BC", "Accessories", "Bottles and Cages", "No"),
    ("AC_HE", "Accessories", "Helmets", "No"),
    ("BI_MB", "Bikes", "Mountain Bikes", "Yes"),
    ("BI_RB", "Bikes", "Road Bikes", "Yes"),
    ("BI_TB", "Bikes", "Touring Bikes", "Yes"),
    ("CL_GL", "Clothing", "Gloves", "No"),
    ("CL_JE", "Clothing", "Jerseys", "No"),
    ("CO_HB", "Components", "Handlebars", "Yes"),
    ("CO_PD", "Components", "Pedals", "Yes"),
]

PRODUCT_LINE_CODES = ["M", "R", "S", "T", "r", " S", None]
MARITAL_CODES = ["S", "M", "m", " S", None, "X"]
CRM_GENDER_CODES = ["F", "M", "f", " M", None, "n/a"]
ERP_GENDER_CODES = ["Female", "Male", "F", "M", " ", None]
COUNTRY_CODES = ["DE", "US", "USA", "Germany", "Canada", "Australia", "France", " United Kingdom", "", None]

CUSTOMER_NUMBER_BASE = 11000
SALES_DATE_START = date(2010, 12, 29)
SALES_DATE_DAYS = 1500


# =============================================================================
# GENERATOR
# =============================================================================

class RawExtractGenerator:
    """
    Seeded generator for the six raw extracts.

    Example:
        generator = RawExtractGenerator(seed=42)
        extracts = generator.generate_all(n_customers=500, n_products=60, n_sales=5000)
        generator.save(extracts, "data/sources")
    """

    def __init__(self, seed: int = 42, defect_rate: float = 0.05):
        self.seed = seed
        self.defect_rate = defect_rate
        self.rng = np.random.default_rng(seed)
        self.random = random.Random(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

    def _defective(self) -> bool:
        return self.random.random() < self.defect_rate

    def _pad(self, value: str) -> str:
        return f"  {value} " if self._defective() else value

    # -------------------------------------------------------------------------
    # CRM
    # -------------------------------------------------------------------------

    def generate_customers(self, n: int = 1000) -> pl.DataFrame:
        """CRM customers, with duplicated and id-less rows appended"""
        rows = []
        for i in range(n):
            created = self.fake.date_between(start_date=date(2024, 1, 1) - timedelta(days=900), end_date=date(2024, 1, 1))
            rows.append({
                "customer_id": CUSTOMER_NUMBER_BASE + i,
                "customer_number": f"AW{CUSTOMER_NUMBER_BASE + i:08d}",
                "first_name": self._pad(self.fake.first_name()),
                "last_name": self._pad(self.fake.last_name()),
                "marital_status": self.random.choice(MARITAL_CODES),
                "gender": self.random.choice(CRM_GENDER_CODES),
                "create_date": created.isoformat(),
            })

        # Older, emptier copies of some customers; the newest record must win
        duplicates = []
        for row in self.random.sample(rows, k=max(1, int(n * self.defect_rate))):
            older = date.fromisoformat(row["create_date"]) - timedelta(days=self.random.randint(1, 200))
            duplicates.append({
                **row,
                "first_name": None,
                "marital_status": None,
                "gender": None,
                "create_date": older.isoformat(),
            })

        orphans = [
            {
                "customer_id": None,
                "customer_number": f"AW{self.random.randint(90000000, 99999999):08d}",
                "first_name": self.fake.first_name(),
                "last_name": self.fake.last_name(),
                "marital_status": "S",
                "gender": "F",
                "create_date": None,
            }
            for _ in range(max(1, n // 200))
        ]

        all_rows = rows + duplicates + orphans
        self.random.shuffle(all_rows)
        return pl.DataFrame(all_rows, schema=RAW_SCHEMAS[Table.CRM_CUSTOMERS])

    def generate_products(self, n: int = 100) -> pl.DataFrame:
        """CRM products; some carry several versions with later start dates"""
        rows = []
        product_id = 200
        for i in range(n):
            category_id = self.random.choice(CATEGORIES)[0]
            # One product in twenty is in a category the ERP does not know
            prefix = "ZZ-ZZ" if self._defective() else category_id.replace("_", "-")
            number = f"{prefix}-{self.fake.bothify('??-####').upper()}"
            name = f"{self.fake.word().title()} {self.fake.word().title()}-{i}"
            start = self.fake.date_between(start_date=date(2003, 1, 1), end_date=date(2011, 12, 31))
            versions = int(self.rng.choice([1, 2, 3], p=[0.6, 0.3, 0.1]))
            cost = round(float(self.rng.uniform(1, 1500)), 2)

            for _ in range(versions):
                product_id += 1
                rows.append({
                    "product_id": product_id,
                    "product_number": number,
                    "product_name": self._pad(name),
                    "cost": None if self._defective() else cost,
                    "product_line": self.random.choice(PRODUCT_LINE_CODES),
                    "start_date": start.isoformat(),
                })
                start = start + timedelta(days=self.random.randint(180, 720))
                cost = round(cost * float(self.rng.uniform(1.0, 1.2)), 2)

        return pl.DataFrame(rows, schema=RAW_SCHEMAS[Table.CRM_PRODUCTS])

    def _date_key(self, day: date) -> int:
        if self._defective():
            return self.random.choice([0, 5489, 32154, int(day.strftime("%Y%m%d")) * 10, 20231301])
        return int(day.strftime("%Y%m%d"))

    def generate_sales(
        self,
        customers: pl.DataFrame,
        products: pl.DataFrame,
        n: int = 10000,
    ) -> pl.DataFrame:
        """CRM sales lines referencing the generated customers and products"""
        customer_ids = customers["customer_id"].drop_nulls().unique().sort().to_list()
        product_numbers = (
            products["product_number"].str.slice(6).unique().sort().to_list()
        )

        rows = []
        order_number = 43697
        while len(rows) < n:
            order_number += 1
            customer_id = self.random.choice(customer_ids)
            if self._defective():
                customer_id = max(customer_ids) + self.random.randint(1, 1000)
            order_day = SALES_DATE_START + timedelta(days=int(self.rng.integers(0, SALES_DATE_DAYS)))
            ship_day = order_day + timedelta(days=7)
            due_day = order_day + timedelta(days=12)

            for _ in range(int(self.rng.choice([1, 2, 3], p=[0.7, 0.2, 0.1]))):
                product_number = self.random.choice(product_numbers)
                if self._defective():
                    product_number = f"XX-{self.random.randint(1000, 9999)}"
                quantity = int(self.rng.choice([1, 2, 3], p=[0.85, 0.1, 0.05]))
                price = round(float(self.rng.uniform(2, 3500)), 2)
                amount: Optional[float] = round(quantity * price, 2)
                unit_price: Optional[float] = price

                defect = self.random.random()
                if defect < self.defect_rate / 4:
                    amount = None
                elif defect < self.defect_rate / 2:
                    amount = self.random.choice([0.0, -amount, amount + 10])
                elif defect < 3 * self.defect_rate / 4:
                    unit_price = None
                elif defect < self.defect_rate:
                    unit_price = -price

                rows.append({
                    "order_number": f"SO{order_number}",
                    "product_number": product_number,
                    "customer_id": customer_id,
                    "order_date": self._date_key(order_day),
                    "ship_date": int(ship_day.strftime("%Y%m%d")),
                    "due_date": int(due_day.strftime("%Y%m%d")),
                    "sales_amount": amount,
                    "quantity": quantity,
                    "unit_price": unit_price,
                })

        return pl.DataFrame(rows[:n], schema=RAW_SCHEMAS[Table.CRM_SALES])

    # -------------------------------------------------------------------------
    # ERP
    # -------------------------------------------------------------------------

    def generate_demographics(self, customers: pl.DataFrame, as_of: date) -> pl.DataFrame:
        """ERP demographics keyed by prefixed customer numbers"""
        rows = []
        for number in customers["customer_number"].unique(maintain_order=True).to_list():
            birthdate = self.fake.date_between(start_date=date(1930, 1, 1), end_date=date(2000, 12, 31))
            if self._defective():
                birthdate = as_of + timedelta(days=self.random.randint(1, 3650))
            rows.append({
                "customer_number": f"NAS{number}" if self.random.random() < 0.5 else number,
                "birthdate": birthdate.isoformat(),
                "gender": self.random.choice(ERP_GENDER_CODES),
            })
        return pl.DataFrame(rows, schema=RAW_SCHEMAS[Table.ERP_DEMOGRAPHICS])

    def generate_locations(self, customers: pl.DataFrame) -> pl.DataFrame:
        """ERP locations keyed by hyphenated customer numbers"""
        rows = [
            {
                "customer_number": f"{number[:2]}-{number[2:]}",
                "country": self.random.choice(COUNTRY_CODES),
            }
            for number in customers["customer_number"].unique(maintain_order=True).to_list()
        ]
        return pl.DataFrame(rows, schema=RAW_SCHEMAS[Table.ERP_LOCATIONS])

    def generate_categories(self) -> pl.DataFrame:
        """ERP category master, with the odd padded label"""
        rows = [
            {
                "category_id": category_id,
                "category": category,
                "subcategory": self._pad(subcategory),
                "maintenance": maintenance,
            }
            for category_id, category, subcategory, maintenance in CATEGORIES
        ]
        return pl.DataFrame(rows, schema=RAW_SCHEMAS[Table.ERP_CATEGORIES])

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def generate_all(
        self,
        n_customers: int = 1000,
        n_products: int = 100,
        n_sales: int = 10000,
        as_of: Optional[date] = None,
    ) -> Dict[str, pl.DataFrame]:
        """Generate all six extracts, keyed by raw table name"""
        as_of = as_of or date.today()
        customers = self.generate_customers(n_customers)
        products = self.generate_products(n_products)
        return {
            Table.CRM_CUSTOMERS.value: customers,
            Table.CRM_PRODUCTS.value: products,
            Table.CRM_SALES.value: self.generate_sales(customers, products, n_sales),
            Table.ERP_DEMOGRAPHICS.value: self.generate_demographics(customers, as_of),
            Table.ERP_LOCATIONS.value: self.generate_locations(customers),
            Table.ERP_CATEGORIES.value: self.generate_categories(),
        }

    def save(
        self,
        extracts: Dict[str, pl.DataFrame],
        output_dir: Optional[str] = None,
    ) -> List[Path]:
        """Write extracts as CSV using the configured source file layout"""
        sources = get_settings().sources
        root = Path(output_dir or sources.source_dir)
        written = []
        for table, df in extracts.items():
            path = root / sources.files[table]
            path.parent.mkdir(parents=True, exist_ok=True)
            df.write_csv(path)
            written.append(path)
        return written
