from __future__ import annotations

"""Operator-facing message catalogue (French default, English).

Keys are the UPPER_SNAKE error codes also written to the JSON Lines error log.
Row-related messages always embed the 1-based display row number.
"""

__all__ = [
    "CATALOGUES",
    "Messages",
]

_FR: dict[str, str] = {
    # fichiers
    "FILE_NOT_FOUND": "Fichier introuvable : {path}",
    "FILE_NOT_READABLE": "Fichier illisible : {path}",
    "NOT_XLSX": "Le fichier de salaire doit être au format xlsx (reçu : {ext})",
    "NOT_ZIP": "Le fichier de PDF doit être au format zip (reçu : {ext})",
    "XLSX_UNREADABLE": "Impossible de lire le fichier XLSX : {detail}",
    "NO_DATA_ROWS": "Aucune ligne de données dans le fichier",
    "ARCHIVE_ERROR": "Erreur lors de l'extraction du fichier zip de PDF : {detail}",
    "NO_DATA_TO_IMPORT": "Aucune donnée à importer",
    # validation
    "EMPTY_NAME": "Prénom ou nom vide à la ligne {row}",
    "EMPTY_PAYMENT_DATE": "Date de paiement vide à la ligne {row}",
    "INVALID_PAYMENT_DATE": "Date de paiement ({value}) invalide à la ligne {row}",
    "INVALID_AMOUNT": "Montant vide ou invalide à la ligne {row}",
    "EMPTY_LABEL": "Libellé vide à la ligne {row}",
    "EMPTY_START_DATE": "Date de début vide à la ligne {row}",
    "INVALID_START_DATE": "Date de début ({value}) invalide à la ligne {row}",
    "EMPTY_END_DATE": "Date de fin vide à la ligne {row}",
    "INVALID_END_DATE": "Date de fin ({value}) invalide à la ligne {row}",
    "EMPTY_PAYMENT_TYPE": "Type de paiement vide à la ligne {row}",
    "EMPTY_PAID": "Champ Payé vide à la ligne {row}",
    "INVALID_PAID": "Payé invalide (doit être oui/non) à la ligne {row}",
    "EMPTY_BANK_ACCOUNT": "Compte bancaire vide à la ligne {row}",
    # recherche
    "USER_NOT_FOUND": "Utilisateur non trouvé à la ligne {row}",
    "PAYMENT_TYPE_NOT_FOUND": "Type de paiement '{code}' non trouvé à la ligne {row}",
    "BANK_ACCOUNT_NOT_FOUND": "Compte bancaire '{ref}' non trouvé à la ligne {row}",
    "LOOKUP_QUERY_FAILED": "Erreur base de données : {detail}",
    # enregistrement
    "PERSIST_ROW_FAILED": "Erreur lors de l'enregistrement de la ligne {row} : {detail}",
    "BATCH_ROLLED_BACK": "Import annulé : aucune ligne n'a été enregistrée",
    "PDF_ATTACH_FAILED": "PDF {file} non joint au salaire de la ligne {row} : {detail}",
    "PERSIST_FAILED": "Erreur lors de l'enregistrement, aucune ligne conservée : {detail}",
    "CLEANUP_FAILED": "Nettoyage incomplet : {detail}",
    "INVALID_PREVIEW": "Fichier d'aperçu invalide : {detail}",
    # aperçu
    "NO_PDF": "Aucun",
}

_EN: dict[str, str] = {
    "FILE_NOT_FOUND": "File not found: {path}",
    "FILE_NOT_READABLE": "File is not readable: {path}",
    "NOT_XLSX": "Salary file must be in xlsx format, got: {ext}",
    "NOT_ZIP": "PDF file must be in zip format, got: {ext}",
    "XLSX_UNREADABLE": "Cannot read XLSX file: {detail}",
    "NO_DATA_ROWS": "No data rows found in file",
    "ARCHIVE_ERROR": "Error extracting PDF zip file: {detail}",
    "NO_DATA_TO_IMPORT": "No data to import",
    "EMPTY_NAME": "Empty firstname or lastname at row {row}",
    "EMPTY_PAYMENT_DATE": "Empty payment date at row {row}",
    "INVALID_PAYMENT_DATE": "Invalid payment date ({value}) at row {row}",
    "INVALID_AMOUNT": "Empty or invalid amount at row {row}",
    "EMPTY_LABEL": "Empty label at row {row}",
    "EMPTY_START_DATE": "Empty start date at row {row}",
    "INVALID_START_DATE": "Invalid start date ({value}) at row {row}",
    "EMPTY_END_DATE": "Empty end date at row {row}",
    "INVALID_END_DATE": "Invalid end date ({value}) at row {row}",
    "EMPTY_PAYMENT_TYPE": "Empty payment type at row {row}",
    "EMPTY_PAID": "Empty paid field at row {row}",
    "INVALID_PAID": "Invalid paid value (must be yes/no) at row {row}",
    "EMPTY_BANK_ACCOUNT": "Empty bank account at row {row}",
    "USER_NOT_FOUND": "User not found at row {row}",
    "PAYMENT_TYPE_NOT_FOUND": "Payment type '{code}' not found at row {row}",
    "BANK_ACCOUNT_NOT_FOUND": "Bank account '{ref}' not found at row {row}",
    "LOOKUP_QUERY_FAILED": "Database error: {detail}",
    "PERSIST_ROW_FAILED": "Error persisting row {row}: {detail}",
    "BATCH_ROLLED_BACK": "Import rolled back: no row was saved",
    "PDF_ATTACH_FAILED": "PDF {file} not attached to salary of row {row}: {detail}",
    "PERSIST_FAILED": "Error while saving, no row was kept: {detail}",
    "CLEANUP_FAILED": "Cleanup incomplete: {detail}",
    "INVALID_PREVIEW": "Invalid preview file: {detail}",
    "NO_PDF": "None",
}

CATALOGUES: dict[str, dict[str, str]] = {"fr": _FR, "en": _EN}


class Messages:
    """Format catalogue entries for one language.

    >>> Messages("en")("EMPTY_LABEL", row=3)
    'Empty label at row 3'
    """

    def __init__(self, language: str = "fr") -> None:
        if language not in CATALOGUES:
            raise ValueError(f"unsupported language: {language}")
        self.language = language
        self._catalogue = CATALOGUES[language]

    def __call__(self, code: str, /, **params: object) -> str:
        template = self._catalogue.get(code)
        if template is None:
            # 未登録キーはそのまま返す
            return code
        return template.format(**params)
