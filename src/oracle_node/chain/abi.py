COORDINATOR_ABI = [
    {
        "type": "event",
        "name": "StatusUpdate",
        "anonymous": False,
        "inputs": [
            {"name": "taskId", "type": "uint256", "indexed": True},
            {"name": "protocol", "type": "bytes32", "indexed": True},
            {"name": "statusBefore", "type": "uint8", "indexed": False},
            {"name": "statusAfter", "type": "uint8", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "requests",
        "stateMutability": "view",
        "inputs": [{"name": "taskId", "type": "uint256"}],
        "outputs": [
            {"name": "requester", "type": "address"},
            {"name": "protocol", "type": "bytes32"},
            {
                "name": "parameters",
                "type": "tuple",
                "components": [
                    {"name": "difficulty", "type": "uint8"},
                    {"name": "numGenerations", "type": "uint40"},
                    {"name": "numValidations", "type": "uint40"},
                ],
            },
            {"name": "status", "type": "uint8"},
            {"name": "generatorFee", "type": "uint256"},
            {"name": "validatorFee", "type": "uint256"},
            {"name": "platformFee", "type": "uint256"},
            {"name": "input", "type": "bytes"},
            {"name": "models", "type": "bytes"},
        ],
    },
    {
        "type": "function",
        "name": "getResponses",
        "stateMutability": "view",
        "inputs": [{"name": "taskId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "responder", "type": "address"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "score", "type": "uint256"},
                    {"name": "output", "type": "bytes"},
                    {"name": "metadata", "type": "bytes"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "getBestResponse",
        "stateMutability": "view",
        "inputs": [{"name": "taskId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "responder", "type": "address"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "score", "type": "uint256"},
                    {"name": "output", "type": "bytes"},
                    {"name": "metadata", "type": "bytes"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "getValidations",
        "stateMutability": "view",
        "inputs": [{"name": "taskId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "validator", "type": "address"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "scores", "type": "uint256[]"},
                    {"name": "metadata", "type": "bytes"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "registry",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "respond",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "taskId", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "output", "type": "bytes"},
            {"name": "metadata", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "validate",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "taskId", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "scores", "type": "uint256[]"},
            {"name": "metadata", "type": "bytes"},
        ],
        "outputs": [],
    },
]

REGISTRY_ABI = [
    {
        "type": "function",
        "name": "isRegistered",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "kind", "type": "uint8"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]
