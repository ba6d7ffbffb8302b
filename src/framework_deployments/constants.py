"""Configuration constants for framework-deployments library."""

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"

ZERO_SALT = bytes(32)

# Init code hash of the transient factory every proxy is created through.
# Proxy addresses only depend on (deployer, salt) because this hash is fixed.
PROXY_FACTORY_CODEHASH = bytes.fromhex(
    "21c35dbe1b344a2488cf3321d6ce542f8e9f305544ff09e4993a62319a497c1f"
)

# RLP prefix of a 20-byte address list item, and the nonce the transient
# factory uses for its one and only CREATE.
CREATE_RLP_PREFIX = bytes([0xD6, 0x94])
CREATE_FIRST_NONCE = bytes([0x01])

# Library placeholders emitted by solc/truffle: "__" + name padded with "_" to 40 chars
LIBRARY_PLACEHOLDER_LENGTH = 40
LIBRARY_PLACEHOLDER_MARKER = "__"

# VersionTag layout: "SSSSS-CCCCCCC-HHHHHHH"
VERSION_SEMVER_LENGTH = 5
VERSION_FRAGMENT_LENGTH = 7
VERSION_TAG_MAX_BYTES = 32

# Registry domains
DEPLOYER_DOMAIN = "deployer"
LIBS_DOMAIN = "libs"
CORE_DOMAIN = "core"
DEFAULT_DOMAIN_ORDER = ("core", "apps")

# Settings layer applied to every network before ecosystem and network overrides
DEFAULT_LAYER = "default"

DEFAULT_RPC_ENV = "ETH_RPC_URL"

# Name fragments used to infer artifact traits when no descriptor declares them
UPGRADABLE_MARKERS = ("Upgradable", "Trustable", "Trustless")
TRUSTABLE_MARKER = "Trustable"

# Registry documents, looked up under ./migrations unless told otherwise
DEFAULT_REGISTRY_DIR = "migrations"
ADDRESSES_FILE = "addresses.json"
CONSTRUCTOR_ARGS_FILE = "constructorArgs.json"
