"""Library Borrow API - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Library service: books, borrow workflow, summary report (library.py)
- CLI interface (main.py)
- Data models (book.py, borrow.py)
- Request validation (schemas.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
