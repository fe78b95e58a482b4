"""ABI of the deployed invoice marketplace contract.

All monetary arguments are uint256 minor units (see chain/units.py).
"""

INVOICE_MARKET_ABI: list[dict] = [
    {
        "inputs": [
            {"internalType": "string", "name": "_dbId", "type": "string"},
            {"internalType": "uint256", "name": "_priceInWei", "type": "uint256"},
            {"internalType": "uint256", "name": "_originalAmountInWei", "type": "uint256"},
            {"internalType": "string", "name": "_pdfUrl", "type": "string"},
        ],
        "name": "createInvoice",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "_id", "type": "uint256"}],
        "name": "buyInvoice",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "_id", "type": "uint256"}],
        "name": "repayInvoice",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "_id", "type": "uint256"}],
        "name": "getInvoice",
        "outputs": [
            {"internalType": "string", "name": "dbId", "type": "string"},
            {"internalType": "uint256", "name": "price", "type": "uint256"},
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "string", "name": "pdfUrl", "type": "string"},
            {"internalType": "bool", "name": "isForSale", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getInvoiceCount",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "id", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "dbId", "type": "string"},
            {"indexed": False, "internalType": "uint256", "name": "price", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "owner", "type": "address"},
        ],
        "name": "InvoiceCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "id", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "newOwner", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "price", "type": "uint256"},
        ],
        "name": "InvoicePurchased",
        "type": "event",
    },
]
