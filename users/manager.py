"""
Account Management System for the exam booking bot
Handles persistent storage and retrieval of candidate accounts
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from automation.shared.booking_contracts import Account


class AccountManager:
    """
    Manages candidate accounts with persistent JSON storage

    Accounts are keyed by their id. Only active accounts take part in a
    booking batch; an account is deactivated once it reaches the payment
    step so it is not booked twice.
    """

    def __init__(self, file_path: str = 'accounts.json') -> None:
        """
        Initialize the AccountManager with persistent storage

        Args:
            file_path: Path to the JSON file for storing account data
        """
        self.file_path = Path(file_path)
        self.logger = logging.getLogger('AccountManager')
        self.accounts: Dict[str, Account] = self._load_accounts()

        self.logger.info(f"AccountManager initialized with {len(self.accounts)} accounts from {file_path}")

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(str(account_id))

    def save_account(self, account: Account) -> None:
        """
        Save or update an account

        Args:
            account: Account to persist; replaces any account with the same id
        """
        self.accounts[account.account_id] = account
        self._save_accounts()
        self.logger.info(f"Saved account {account.account_id} ({account.email})")

    def get_all_accounts(self) -> List[Account]:
        return list(self.accounts.values())

    def active_accounts(self, owner_id: Optional[str] = None) -> List[Account]:
        """
        Return accounts eligible for booking

        Args:
            owner_id: When given, only accounts belonging to this chat id
        """
        return [
            account
            for account in self.accounts.values()
            if account.active and (owner_id is None or account.owner_id == str(owner_id))
        ]

    def deactivate(self, account_id: str) -> bool:
        """Mark an account inactive; returns False if it does not exist."""
        account = self.accounts.get(str(account_id))
        if account is None:
            self.logger.warning(f"Cannot deactivate unknown account {account_id}")
            return False
        if not account.active:
            return True

        self.accounts[account.account_id] = replace(account, active=False)
        self._save_accounts()
        self.logger.info(f"Deactivated account {account_id} ({account.email})")
        return True

    def _save_accounts(self) -> None:
        """
        Internal helper method to save account data to JSON file
        """
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            payload = {account_id: account.to_dict() for account_id, account in self.accounts.items()}
            with open(self.file_path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)

            self.logger.debug(f"Successfully saved {len(self.accounts)} accounts to {self.file_path}")

        except Exception as e:
            self.logger.error(f"Error saving accounts to {self.file_path}: {e}", exc_info=True)
            raise

    def _load_accounts(self) -> Dict[str, Account]:
        """
        Internal helper method to load account data from JSON file

        Returns:
            Dictionary of accounts keyed by id
            Returns empty dictionary if file doesn't exist or is invalid
        """
        try:
            if not self.file_path.exists() or self.file_path.stat().st_size == 0:
                self.logger.info(f"Account file {self.file_path} is missing or empty, starting with no accounts")
                return {}

            with open(self.file_path, 'r', encoding='utf-8') as f:
                data: Any = json.load(f)

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in account file {self.file_path}: {e}")
            return {}

        entries = data.values() if isinstance(data, dict) else data
        accounts: Dict[str, Account] = {}
        for entry in entries or []:
            try:
                account = Account.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed account entry: {e}")
                continue
            accounts[account.account_id] = account

        self.logger.info(f"Successfully loaded {len(accounts)} accounts from {self.file_path}")
        return accounts
