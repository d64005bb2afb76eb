# Copyright 2025 Hathor Labs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Shared fixtures for MyToken blueprint tests.

Provides the deployment parameters, address generation and context helpers
used by every MyToken test suite.
"""

import os
import time

from hathor.conf.get_settings import HathorSettings
from hathor.crypto.util import decode_address
from hathor.nanocontracts.context import Context
from hathor.nanocontracts.types import (
    Address,
    Amount,
    NCDepositAction,
    NCWithdrawalAction,
)
from hathor.util import not_none
from hathor.wallet.keypair import KeyPair
from hathor_tests.nanocontracts.blueprints.unittest import BlueprintTestCase

from mytoken.nanocontracts.blueprints.my_token import (
    DEFAULT_MINT_PRICE,
    MyToken,
)

settings = HathorSettings()
HTR_UID = settings.HATHOR_TOKEN_UID


class SaleConstants:
    """Deployment parameters and timings shared by the sale tests."""

    BATCH_SIZE = 5
    COLLECTION_SIZE = 10000
    MINT_PRICE = DEFAULT_MINT_PRICE

    # 5 units at 0.40 HTR
    BATCH_PAYMENT = Amount(2_00)

    # Offsets from sale start
    EARLY_SALE_OFFSET = 1800
    PUBLIC_SALE_OFFSET = 96450


def get_any_address() -> tuple[bytes, KeyPair]:
    """Generate a random address and keypair."""
    password = os.urandom(12)
    key = KeyPair.create(password)
    address_b58 = key.address
    address_bytes = decode_address(not_none(address_b58))
    return address_bytes, key


class MyTokenTestCase(BlueprintTestCase):
    """Base case deploying a MyToken contract with an owner, an admin and users."""

    def setUp(self):
        super().setUp()

        self.contract_id = self.gen_random_contract_id()
        self.blueprint_id = self._register_blueprint_class(MyToken)
        self.tx = self.get_genesis_tx()

        self.owner_address = get_any_address()[0]
        self.admin_address = get_any_address()[0]
        self.users = [get_any_address()[0] for _ in range(6)]

        self.deploy_time = int(time.time())
        self.sale_start = self.deploy_time + 100

    def _context(
        self,
        address: bytes,
        timestamp: int | None = None,
        actions: list | None = None,
    ) -> Context:
        if timestamp is None:
            timestamp = self.deploy_time
        return self.create_context(
            actions=actions or [],
            vertex=self.tx,
            caller_id=Address(address),
            timestamp=timestamp,
        )

    def _deploy(
        self,
        batch_size: int = SaleConstants.BATCH_SIZE,
        collection_size: int = SaleConstants.COLLECTION_SIZE,
        mint_price: int = SaleConstants.MINT_PRICE,
        with_admin: bool = True,
    ) -> None:
        """Create the contract as the owner and register the default admin."""
        self.runner.create_contract(
            self.contract_id,
            self.blueprint_id,
            self._context(self.owner_address),
            batch_size,
            collection_size,
            mint_price,
        )
        if with_admin:
            self._call(self.owner_address, "set_admin", Address(self.admin_address), True)

    def _call(self, address: bytes, method: str, *args, timestamp: int | None = None) -> None:
        self.runner.call_public_method(
            self.contract_id, method, self._context(address, timestamp), *args
        )

    def _view(self, method: str, *args):
        return self.runner.call_view_method(self.contract_id, method, *args)

    def _last_events(self) -> list[bytes]:
        """Payloads emitted by the last public call."""
        call_info = self.runner.get_last_call_info()
        return [event.data for event in call_info.nc_logger.__events__]

    def _contract(self) -> MyToken:
        contract = self.get_readonly_contract(self.contract_id)
        assert isinstance(contract, MyToken)
        return contract

    def _enable_sale(self) -> None:
        self._call(self.owner_address, "enable_sale", timestamp=self.sale_start)

    def _mint(
        self,
        address: bytes,
        quantity: int = SaleConstants.BATCH_SIZE,
        payment: int = SaleConstants.BATCH_PAYMENT,
        offset: int = SaleConstants.EARLY_SALE_OFFSET,
    ) -> None:
        """Mint as `address` at `offset` seconds after sale start."""
        ctx = self._context(
            address,
            timestamp=self.sale_start + offset,
            actions=[NCDepositAction(token_uid=HTR_UID, amount=Amount(payment))],
        )
        self.runner.call_public_method(self.contract_id, "mint", ctx, quantity)

    def _withdraw(self, address: bytes, amount: int) -> None:
        ctx = self._context(
            address,
            timestamp=self.sale_start + SaleConstants.PUBLIC_SALE_OFFSET,
            actions=[NCWithdrawalAction(token_uid=HTR_UID, amount=Amount(amount))],
        )
        self.runner.call_public_method(self.contract_id, "withdraw_money", ctx)

    def _contract_htr_balance(self) -> int:
        storage = self.runner.get_storage(self.contract_id)
        return storage.get_balance(HTR_UID).value

    def _check_contract_balances(self) -> None:
        """Verify the ledger HTR balance matches the registered treasury."""
        actual_htr_balance = self._contract_htr_balance()
        expected_htr_balance = self._contract().treasury_balance
        self.assertEqual(
            actual_htr_balance,
            expected_htr_balance,
            f"HTR balance mismatch. Expected: {expected_htr_balance}, Got: {actual_htr_balance}",
        )
