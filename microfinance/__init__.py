"""
Microfinance Lending Core

Client intake, loan origination and approval, installment scheduling,
payment collection, cash reconciliation, finance reporting and advisor goals
for a small-business lending operation. All monetary values use Decimal.
"""

__version__ = "1.0.0"
