"""ABI fragments for the lending diamond (view, auth and loan facets)."""
from eth_utils import function_signature_to_4byte_selector

from ..abi import AbiFunction

# getLoanById returns a single struct.
LOAN_RECORD_TYPE = (
    "(uint256,uint256,address,uint256,uint256,uint256,uint256,uint256,"
    "uint256,uint256,uint256,bool,address,uint64,address,bool[])"
)

# --- view facet --------------------------------------------------------------

GET_USER_INVESTMENTS = AbiFunction(
    "getUserInvestments", ("address",), ("uint256[]", "uint256[]", "bool[]")
)
GET_USER_NFT_DETAIL = AbiFunction(
    "getUserNFTDetail",
    ("address", "uint256"),
    ("bool", "uint256", "uint256", "uint256", "address"),
)
GET_USER_LOANS = AbiFunction("getUserLoans", ("address",), ("uint256[]",))
GET_LOAN_BY_ID = AbiFunction("getLoanById", ("uint256",), (LOAN_RECORD_TYPE,))
CALCULATE_INTEREST_RATE = AbiFunction("calculateInterestRate", ("uint256",), ("uint256",))
CALCULATE_LOAN_TERMS = AbiFunction(
    "calculateLoanTerms", ("uint256", "uint256"), ("uint256", "uint256")
)
VALIDATE_LOAN_CREATION_VIEW = AbiFunction(
    "validateLoanCreationView", ("uint256", "uint256")
)

# --- auth facet --------------------------------------------------------------

TOKEN_URI = AbiFunction("tokenURI", ("uint256",), ("string",))

# --- loan facet --------------------------------------------------------------

CREATE_LOAN = AbiFunction(
    "createLoan",
    ("uint256", "uint256", "uint256", "uint256", "address", "uint64", "address"),
)

# --- custom errors -----------------------------------------------------------

KNOWN_CUSTOM_ERRORS: dict[bytes, str] = {
    function_signature_to_4byte_selector(f"{name}()"): name
    for name in (
        "InvalidLoanDuration",
        "LoanAlreadyExists",
        "Unauthorized",
        "InsufficientCollateral",
        "InvalidAmount",
        "LoanNotActive",
    )
}
