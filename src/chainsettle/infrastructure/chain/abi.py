"""Minimal ABIs for the deposit factory and ERC-20 tokens."""

DEPOSIT_FACTORY_ABI = [
    {
        "inputs": [{"name": "salt", "type": "bytes32"}],
        "name": "getDepositAddress",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "paymentId", "type": "string"}],
        "name": "getSalt",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "implementation",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "platformWallet",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "defaultFeeBps",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "salt", "type": "bytes32"},
            {"name": "token", "type": "address"},
            {"name": "merchant", "type": "address"},
        ],
        "name": "sweep",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "salt", "type": "bytes32"},
            {"name": "token", "type": "address"},
            {"name": "merchant", "type": "address"},
            {"name": "feeBps", "type": "uint256"},
        ],
        "name": "sweepWithFee",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "salts", "type": "bytes32[]"},
            {"name": "tokens", "type": "address[]"},
            {"name": "merchants", "type": "address[]"},
        ],
        "name": "batchSweep",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "salts", "type": "bytes32[]"},
            {"name": "tokens", "type": "address[]"},
            {"name": "merchants", "type": "address[]"},
            {"name": "feeBps", "type": "uint256[]"},
        ],
        "name": "batchSweepWithFees",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "salt", "type": "bytes32"},
            {"indexed": True, "name": "depositAddress", "type": "address"},
            {"indexed": False, "name": "token", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "merchant", "type": "address"},
            {"indexed": False, "name": "platformFee", "type": "uint256"},
        ],
        "name": "Swept",
        "type": "event",
    },
]

ERC20_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]
