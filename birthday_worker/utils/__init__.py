# birthday_worker/utils/__init__.py
