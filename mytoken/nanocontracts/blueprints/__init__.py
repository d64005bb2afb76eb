from mytoken.nanocontracts.blueprints.my_token import MyToken

__all__ = ["MyToken"]
