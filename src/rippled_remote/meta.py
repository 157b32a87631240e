"""Transaction metadata helpers: which accounts and order books a transaction touched."""
from xrpl.utils.txn_parser.utils import NormalizedNode, normalize_nodes

from rippled_remote import amount as A

# AccountRoot/RippleState/Offer fields that name an account
_ACCOUNT_FIELDS = ("Account", "Destination", "Owner", "RegularKey")
_AMOUNT_FIELDS = ("HighLimit", "LowLimit", "TakerGets", "TakerPays", "Balance")


class Meta:
    def __init__(self, raw: dict | None):
        self.raw = raw or {}
        if "AffectedNodes" in self.raw:
            self.nodes: list[NormalizedNode] = normalize_nodes(self.raw)
        else:
            self.nodes = []

    @property
    def result(self) -> str | None:
        return self.raw.get("TransactionResult")

    @staticmethod
    def fields(node: NormalizedNode) -> dict:
        """Most recent view of a node's fields."""
        return node.get("FinalFields") or node.get("NewFields") or {}

    def affected_accounts(self) -> list[str]:
        accounts = []
        for node in self.nodes:
            fields = self.fields(node)
            for name in _ACCOUNT_FIELDS:
                value = fields.get(name)
                if isinstance(value, str) and A.is_valid_account(value):
                    accounts.append(value)
            for name in _AMOUNT_FIELDS:
                value = fields.get(name)
                if isinstance(value, dict) and A.is_valid_account(value.get("issuer")):
                    accounts.append(value["issuer"])
        return list(dict.fromkeys(accounts))

    def affected_books(self) -> list[str]:
        books = []
        for node in self.nodes:
            if node["LedgerEntryType"] != "Offer":
                continue
            fields = self.fields(node)
            gets, pays = fields.get("TakerGets"), fields.get("TakerPays")
            if gets is None or pays is None:
                continue
            books.append(A.book_key(A.amount_issue(gets), A.amount_issue(pays)))
        return list(dict.fromkeys(books))

    def nodes_of(self, entry_type: str) -> list[NormalizedNode]:
        return [n for n in self.nodes if n["LedgerEntryType"] == entry_type]
