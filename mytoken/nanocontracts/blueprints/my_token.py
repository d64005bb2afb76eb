from typing import NamedTuple

from hathor import (
    Address,
    Amount,
    Blueprint,
    Context,
    HATHOR_TOKEN_UID,
    NCDepositAction,
    NCFail,
    NCWithdrawalAction,
    Timestamp,
    TokenUid,
    export,
    public,
    view,
)

# Constants
HTR_UID = TokenUid(HATHOR_TOKEN_UID)
TEAM_MINT_CAP = 200  # Units reserved for the team, minted for free
WHITELIST_WINDOW = 24 * 60 * 60  # Seconds after sale start reserved for whitelist
DEFAULT_MINT_PRICE = 40  # 0.40 HTR per unit


class Unauthorized(NCFail):
    pass


class SaleNotActive(NCFail):
    pass


class NotEligible(NCFail):
    pass


class CapExceeded(NCFail):
    pass


class InsufficientPayment(NCFail):
    pass


class TransferFailed(NCFail):
    pass


class InvalidState(NCFail):
    pass


class InvalidParameters(NCFail):
    pass


class InvalidActions(NCFail):
    pass


class MyTokenErrors:
    """Common error messages"""

    NOT_OWNER = "Ownable: caller is not the owner"
    NOT_ADMIN = "caller is not the owner nor an admin"
    SALE_NOT_ACTIVE = "sale has not begun yet"
    SALE_ALREADY_ENABLED = "sale already enabled"
    NOT_ELIGIBLE = "not eligible for whiteList mint"
    TEAM_CAP = f"More than {TEAM_MINT_CAP} NFTs cannot be minted"
    BATCH_LIMIT = "can not mint this many"
    MAX_SUPPLY = "reached max supply"
    INSUFFICIENT_PAYMENT = "Need to send more HTR."
    TRANSFER_FAILED = "Transfer failed."
    NONEXISTENT_TOKEN = "owner query for nonexistent token"


class SalePhase:
    """Sale phases. Only PRE_SALE -> enabled is stored, the window is derived from time."""

    PRE_SALE = 0
    WHITELIST_WINDOW = 1
    PUBLIC_WINDOW = 2


class Capability:
    """Capability bit flags a caller may hold."""

    NONE = 0
    OWNER = 1
    ADMIN = 2


# Capabilities required by each gated entry point. Holding any one of the
# flags in the mask is enough.
ACCESS_POLICY: dict[str, int] = {
    "set_admin": Capability.OWNER,
    "set_whitelist_policy": Capability.OWNER,
    "transfer_ownership": Capability.OWNER,
    "team_mint": Capability.OWNER,
    "enable_sale": Capability.OWNER,
    "withdraw_money": Capability.OWNER,
    "add_to_whitelist": Capability.OWNER | Capability.ADMIN,
}

WHITELIST_POLICIES = {Capability.OWNER, Capability.OWNER | Capability.ADMIN}


def sale_phase(
    now: int, sale_start: int, sale_enabled: bool, window: int = WHITELIST_WINDOW
) -> int:
    """Return the sale phase at `now`.

    A clock reading earlier than `sale_start` counts as still inside the
    whitelist window.
    """
    if not sale_enabled:
        return SalePhase.PRE_SALE
    if now - sale_start < window:
        return SalePhase.WHITELIST_WINDOW
    return SalePhase.PUBLIC_WINDOW


class MyTokenSaleInfo(NamedTuple):
    """General sale information."""

    owner: str
    batch_size: int
    collection_size: int
    mint_price: int
    total_supply: int
    team_minted: int
    sale_enabled: bool
    sale_start_timestamp: int
    treasury_balance: int
    total_withdrawn: int
    whitelist_policy: int


@export
class MyToken(Blueprint):
    """Fixed-supply collection with a team reservation and a staged public sale.

    The life cycle of contracts using this blueprint is the following:

    1. [Owner] Create the contract with batch size, collection size and price.
    2. [Owner] `set_admin(...)`, `team_mint(...)`, `add_to_whitelist(...)`.
    3. [Owner] `enable_sale()` starts the whitelist window.
    4. [Whitelisted users] `mint(...)` until `WHITELIST_WINDOW` elapses.
    5. [Anyone] `mint(...)` once the public window opens.
    6. [Owner] `withdraw_money()` collects the sale proceeds.
    """

    # Access control
    owner: Address
    admins: dict[Address, bool]
    whitelist: dict[Address, bool]
    whitelist_policy: int

    # Sale configuration
    batch_size: int  # Max units per mint call
    collection_size: int  # Absolute supply cap
    mint_price: Amount  # HTR per unit

    # Supply and phase
    total_supply: int
    team_minted: int
    sale_enabled: bool
    sale_start_timestamp: Timestamp

    # Treasury
    treasury_balance: Amount  # HTR held from paid mints
    total_withdrawn: Amount

    # Ownership ledger
    balances: dict[Address, int]
    minted_counts: dict[Address, int]
    run_owners: dict[int, Address]  # First token id of each run -> owner

    @public
    def initialize(
        self,
        ctx: Context,
        batch_size: int,
        collection_size: int,
        mint_price: int,
    ) -> None:
        """Initialize the collection with its immutable sale parameters."""
        if batch_size <= 0 or collection_size <= 0:
            raise InvalidParameters("Batch and collection size must be positive")
        if batch_size > collection_size:
            raise InvalidParameters("Batch size cannot exceed collection size")
        if mint_price < 0:
            raise InvalidParameters("Invalid mint price")

        self.owner = Address(ctx.caller_id)
        self.admins = {}
        self.whitelist = {}
        self.whitelist_policy = ACCESS_POLICY["add_to_whitelist"]

        self.batch_size = batch_size
        self.collection_size = collection_size
        self.mint_price = Amount(mint_price)

        self.total_supply = 0
        self.team_minted = 0
        self.sale_enabled = False
        self.sale_start_timestamp = Timestamp(0)

        self.treasury_balance = Amount(0)
        self.total_withdrawn = Amount(0)

        self.balances = {}
        self.minted_counts = {}
        self.run_owners = {}

    def _capabilities(self, caller: Address) -> int:
        """Capability mask held by `caller`."""
        capabilities = Capability.NONE
        if caller == self.owner:
            capabilities |= Capability.OWNER
        if self.admins.get(caller, False):
            capabilities |= Capability.ADMIN
        return capabilities

    def _require(self, ctx: Context, method: str) -> None:
        """Check the caller against the access policy of `method`."""
        required = ACCESS_POLICY[method]
        if method == "add_to_whitelist":
            required = self.whitelist_policy
        if self._capabilities(Address(ctx.caller_id)) & required:
            return
        if required == Capability.OWNER:
            raise Unauthorized(MyTokenErrors.NOT_OWNER)
        raise Unauthorized(MyTokenErrors.NOT_ADMIN)

    def _emit(self, name: str, *fields: object) -> None:
        payload = ",".join(str(field) for field in fields)
        self.syscall.emit_event(f"{name}({payload})".encode())

    def _mint_run(self, to: Address, quantity: int) -> None:
        """Assign `quantity` sequential token ids to `to`."""
        self.run_owners[self.total_supply] = to
        self.balances[to] = self.balances.get(to, 0) + quantity
        self.minted_counts[to] = self.minted_counts.get(to, 0) + quantity
        self.total_supply += quantity

    def _get_payment(self, ctx: Context) -> Amount:
        action = ctx.get_single_action(HTR_UID)
        if not isinstance(action, NCDepositAction):
            raise InvalidActions("Expected deposit action")
        return Amount(action.amount)

    @public
    def set_admin(self, ctx: Context, target: Address, grant: bool) -> None:
        """Grant or revoke admin access. Emits even if nothing changes."""
        self._require(ctx, "set_admin")
        self.admins[target] = grant
        self.log.info("admin access set", target=target.hex(), grant=grant)
        self._emit("AdminAccessSet", target.hex(), grant)

    @public
    def set_whitelist_policy(self, ctx: Context, capabilities: int) -> None:
        """Choose who may maintain the whitelist: OWNER or OWNER | ADMIN."""
        self._require(ctx, "set_whitelist_policy")
        if capabilities not in WHITELIST_POLICIES:
            raise InvalidParameters("Invalid whitelist policy")
        self.whitelist_policy = capabilities

    @public
    def transfer_ownership(self, ctx: Context, new_owner: Address) -> None:
        self._require(ctx, "transfer_ownership")
        if new_owner == self.owner:
            raise InvalidParameters("Address is already the owner")
        previous = self.owner
        self.owner = new_owner
        self._emit("OwnershipTransferred", previous.hex(), new_owner.hex())

    @public
    def team_mint(self, ctx: Context, quantity: int) -> None:
        """Mint reserved units to the owner for free, in any phase."""
        self._require(ctx, "team_mint")
        if quantity <= 0:
            raise InvalidParameters("Quantity must be positive")
        if self.team_minted + quantity > TEAM_MINT_CAP:
            raise CapExceeded(MyTokenErrors.TEAM_CAP)
        if self.total_supply + quantity > self.collection_size:
            raise CapExceeded(MyTokenErrors.MAX_SUPPLY)

        remaining = quantity
        while remaining > 0:
            run = min(remaining, self.batch_size)
            self._mint_run(self.owner, run)
            remaining -= run
        self.team_minted += quantity

    @public
    def enable_sale(self, ctx: Context) -> None:
        """Open the sale. The whitelist window starts now."""
        self._require(ctx, "enable_sale")
        if self.sale_enabled:
            raise InvalidState(MyTokenErrors.SALE_ALREADY_ENABLED)

        self.sale_enabled = True
        self.sale_start_timestamp = Timestamp(ctx.block.timestamp)
        self.log.info("sale enabled", start=self.sale_start_timestamp)
        self._emit("enabled", self.sale_start_timestamp)

    @public
    def add_to_whitelist(self, ctx: Context, beneficiary: Address) -> None:
        self._require(ctx, "add_to_whitelist")
        self.whitelist[beneficiary] = True

    @public(allow_deposit=True)
    def mint(self, ctx: Context, quantity: int) -> None:
        """Buy `quantity` units at `mint_price` each."""
        phase = sale_phase(
            ctx.block.timestamp, self.sale_start_timestamp, self.sale_enabled
        )
        if phase == SalePhase.PRE_SALE:
            raise SaleNotActive(MyTokenErrors.SALE_NOT_ACTIVE)

        caller = Address(ctx.caller_id)
        if phase == SalePhase.WHITELIST_WINDOW and not self.whitelist.get(
            caller, False
        ):
            raise NotEligible(MyTokenErrors.NOT_ELIGIBLE)

        if quantity <= 0 or quantity > self.batch_size:
            raise CapExceeded(MyTokenErrors.BATCH_LIMIT)
        if self.total_supply + quantity > self.collection_size:
            raise CapExceeded(MyTokenErrors.MAX_SUPPLY)

        payment = self._get_payment(ctx)
        if payment < self.mint_price * quantity:
            raise InsufficientPayment(MyTokenErrors.INSUFFICIENT_PAYMENT)

        # Overpayment is kept by the treasury
        self.treasury_balance = Amount(self.treasury_balance + payment)
        self._mint_run(caller, quantity)

    @public(allow_withdrawal=True)
    def withdraw_money(self, ctx: Context) -> None:
        """Send the whole treasury to the owner."""
        self._require(ctx, "withdraw_money")
        if self.treasury_balance == 0:
            raise TransferFailed(MyTokenErrors.TRANSFER_FAILED)

        action = ctx.get_single_action(HTR_UID)
        if not isinstance(action, NCWithdrawalAction):
            raise TransferFailed(MyTokenErrors.TRANSFER_FAILED)
        if action.amount != self.treasury_balance:
            raise TransferFailed(MyTokenErrors.TRANSFER_FAILED)

        amount = self.treasury_balance
        self.treasury_balance = Amount(0)
        self.total_withdrawn = Amount(self.total_withdrawn + amount)
        self.log.info("treasury withdrawn", amount=amount)
        self._emit("Withdrawn", amount)

    @view
    def is_admin(self, address: Address) -> bool:
        return self.admins.get(address, False)

    @view
    def is_whitelisted(self, address: Address) -> bool:
        return self.whitelist.get(address, False)

    @view
    def get_total_supply(self) -> int:
        return self.total_supply

    @view
    def balance_of(self, address: Address) -> int:
        return self.balances.get(address, 0)

    @view
    def number_minted(self, address: Address) -> int:
        return self.minted_counts.get(address, 0)

    @view
    def owner_of(self, token_id: int) -> Address:
        """Owner of `token_id`, found at the start of the run that holds it."""
        if token_id < 0 or token_id >= self.total_supply:
            raise NCFail(MyTokenErrors.NONEXISTENT_TOKEN)
        for candidate in range(token_id, -1, -1):
            if candidate in self.run_owners:
                return self.run_owners[candidate]
        raise NCFail(MyTokenErrors.NONEXISTENT_TOKEN)

    @view
    def phase_at(self, timestamp: Timestamp) -> int:
        return sale_phase(timestamp, self.sale_start_timestamp, self.sale_enabled)

    @view
    def get_sale_info(self) -> MyTokenSaleInfo:
        """Get general sale information."""
        return MyTokenSaleInfo(
            owner=self.owner.hex(),
            batch_size=self.batch_size,
            collection_size=self.collection_size,
            mint_price=self.mint_price,
            total_supply=self.total_supply,
            team_minted=self.team_minted,
            sale_enabled=self.sale_enabled,
            sale_start_timestamp=self.sale_start_timestamp,
            treasury_balance=self.treasury_balance,
            total_withdrawn=self.total_withdrawn,
            whitelist_policy=self.whitelist_policy,
        )
