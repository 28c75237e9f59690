"""
Contract ABIs used by the relay.

Only the functions the relay calls are declared.
"""

from typing import Any

SOCIAL_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "postId", "type": "uint256"},
            {"name": "contentHash", "type": "bytes32"},
            {"name": "parentCommentId", "type": "uint256"},
            {"name": "sessionKey", "type": "address"},
            {"name": "user", "type": "address"},
            {"name": "nonce", "type": "uint256"},
        ],
        "name": "add_comment_with_session_key",
        "outputs": [{"name": "commentId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

SESSION_KEY_MANAGER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"name": "sessionKey", "type": "address"}],
        "name": "get_session_key_nonce",
        "outputs": [{"name": "nonce", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "sessionKey", "type": "address"},
            {"name": "expiresAt", "type": "uint64"},
        ],
        "name": "create_session_key",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "sessionKey", "type": "address"}],
        "name": "revoke_session_key",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

BLOG_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "contentUri", "type": "string"},
            {"name": "contentHash", "type": "bytes32"},
            {"name": "price", "type": "uint256"},
            {"name": "isEncrypted", "type": "bool"},
        ],
        "name": "publish_post",
        "outputs": [{"name": "postId", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
