"""
FraudDesk — Default Rules (seed data)
These are inserted at first-run if the rules table is empty.
Amounts are in NGN; locations use "<country>-<city>" codes such as "NG-LAGOS".
"""

# Each dict maps directly onto Rule columns.

DEFAULT_RULES = [
    # ---------------------------------------------------------------
    # 1. High-value single transaction
    # ---------------------------------------------------------------
    {
        "name": "High Value Transaction",
        "field": "Amount",
        "condition": "GreaterThan",
        "value": "500000",
        "severity": "High",
        "severity_weight": 40,
    },
    # ---------------------------------------------------------------
    # 2. Very high-value (critical threshold)
    # ---------------------------------------------------------------
    {
        "name": "Critical Value Transaction",
        "field": "Amount",
        "condition": "GreaterThan",
        "value": "5000000",
        "severity": "Critical",
        "severity_weight": 50,
    },
    # ---------------------------------------------------------------
    # 3. High-risk locations
    # ---------------------------------------------------------------
    {
        "name": "High Risk Location",
        "field": "Location",
        "condition": "In",
        "value": "NG-LAGOS,NG-ABUJA",
        "severity": "Medium",
        "severity_weight": 30,
    },
    # ---------------------------------------------------------------
    # 4. Emulator / rooted device fingerprint
    # ---------------------------------------------------------------
    {
        "name": "Emulated Device",
        "field": "Device",
        "condition": "Equals",
        "value": "Android Emulator",
        "severity": "High",
        "severity_weight": 35,
    },
    # ---------------------------------------------------------------
    # 5. Cash-out channels
    # ---------------------------------------------------------------
    {
        "name": "Cash-Out Transaction Type",
        "field": "TransactionType",
        "condition": "In",
        "value": "Withdrawal, CardlessWithdrawal",
        "severity": "Low",
        "severity_weight": 15,
    },
    # ---------------------------------------------------------------
    # 6. Headless client (alert-only: Contains does not score)
    # ---------------------------------------------------------------
    {
        "name": "Headless Browser Device",
        "field": "Device",
        "condition": "Contains",
        "value": "headless",
        "severity": "Medium",
        "severity_weight": 20,
        "is_enabled": False,
    },
]
