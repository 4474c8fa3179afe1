"""
Static catalog of the regulatory form templates (SBA Form 1919 and SBA Form 413).

Field names are the AcroForm widget names in the template PDFs. Aliases list the
intake keys observed for each field so the mapper can cross-fill both forms from
one answer (e.g. ``businessName`` fills 1919 ``operatingnbusname`` and 413
``businessNameOfApplicantBorrower``).
"""
from __future__ import annotations

from typing import Iterable

from schemas.forms import FieldType, FormField, FormTemplate

TEXT = FieldType.TEXT
BOOL = FieldType.BOOLEAN
NUM = FieldType.NUMERIC


def _f(name: str, type_: FieldType = TEXT, label: str | None = None, *aliases: str, required: bool = False) -> FormField:
    return FormField(name=name, type=type_, label=label or name, aliases=tuple(aliases), required=required)


def _checks(*pairs: tuple[str, str]) -> list[FormField]:
    return [_f(name, BOOL, label) for name, label in pairs]


def _group(name: str, label: str, rows: int, columns: Iterable[tuple[str, FieldType]], *aliases: str) -> FormField:
    return FormField(
        name=name,
        type=FieldType.REPEATED_GROUP,
        label=label,
        aliases=tuple(aliases),
        row_count=rows,
        columns=tuple(FormField(name=c, type=t, label=c) for c, t in columns),
    )


# Entity type -> checkbox field per form (only one may be checked)
ENTITY_TYPE_FIELDS: dict[str, dict[str, str]] = {
    "Sole Proprietor": {"SBA_1919": "soleprop", "SBA_413": "businessTypeSoleProprietor"},
    "Partnership": {"SBA_1919": "partnership", "SBA_413": "businessTypePartnership"},
    "C-Corp": {"SBA_1919": "ccorp", "SBA_413": "businessTypeCorporation"},
    "S-Corp": {"SBA_1919": "scorp", "SBA_413": "businessTypeSCorp"},
    "LLC": {"SBA_1919": "llc", "SBA_413": "businessTypeLLC"},
}


def _owner_fields() -> list[FormField]:
    fields: list[FormField] = []
    for i in range(1, 6):
        first = i == 1
        fields += [
            _f(f"ownName{i}", TEXT, f"Owner {i} Name", *(("printName", "ownerName") if first else ())),
            _f(f"ownTitle{i}", TEXT, f"Owner {i} Title", *(("ownerTitle",) if first else ())),
            _f(f"ownPerc{i}", TEXT, f"Owner {i} Percentage", *(("ownershipPercentage",) if first else ())),
            _f(f"ownTin{i}", TEXT, f"Owner {i} TIN", *(("ownerSSN", "ssn") if first else ())),
            _f(f"ownHome{i}", TEXT, f"Owner {i} Home Address", *(("homeAddress",) if first else ())),
        ]
    return fields


def _question_fields() -> list[FormField]:
    return [
        _f(f"q{i}{answer}", BOOL, f"Question {i} {answer}")
        for i in range(1, 11)
        for answer in ("Yes", "No")
    ]


SBA_1919 = FormTemplate(
    name="SBA_1919",
    title="SBA Form 1919 - Borrower Information Form",
    filename="SBAForm1919.pdf",
    fields=tuple(
        [
            _f("applicantname", TEXT, "Applicant Name", "name", "applicantName", "fullName", required=True),
            _f("operatingnbusname", TEXT, "Operating Business Name", "businessName", required=True),
            _f("busTIN", TEXT, "Business TIN", "taxId", "ein", "businessTaxId", required=True),
            _f("busphone", TEXT, "Business Phone", "businessPhone", "businessPhoneNumber", required=True),
            _f("busAddr", TEXT, "Business Address", "businessAddress", required=True),
            _f("yearbeginoperations", TEXT, "Year Begin Operations", "yearFounded"),
            _f("OC"),
            _f("EPC"),
            _f("dba", TEXT, "DBA", "doingBusinessAs"),
            _f("PrimarIndustry", TEXT, "Primary Industry", "industry", "primaryIndustry"),
            _f("UniqueEntityID", TEXT, "Unique Entity ID", "uei"),
            _f("projAddr", TEXT, "Project Address", "projectAddress"),
            _f("pocName", TEXT, "POC Name", "contactName"),
            _f("pocEmail", TEXT, "POC Email", "email", "contactEmail"),
        ]
        + _checks(
            ("soleprop", "Sole Proprietor"),
            ("partnership", "Partnership"),
            ("ccorp", "C-Corp"),
            ("scorp", "S-Corp"),
            ("llc", "LLC"),
            ("etother", "Entity Other"),
        )
        + [_f("entityother", TEXT, "Entity Other Description")]
        + _checks(
            ("ownESOP", "ESOP"),
            ("own401k", "401k"),
            ("ownCooperative", "Cooperative"),
            ("ownNATribe", "Native American Tribe"),
            ("ownOther", "Ownership Other"),
        )
        + [
            _f("specOwnTypeOther", TEXT, "Special Ownership Type Other"),
            _f("existEmp", NUM, "Existing Employees", "existingEmployees", "employeeCount"),
            _f("fteJobs", NUM, "FTE Jobs", "jobsCreated"),
            _f("debtAmt", NUM, "Debt Amount", "existingDebt"),
            _f("purchConstr", TEXT, "Purchase/Construction"),
            _f("purchAmt", NUM, "Purchase Amount", "purchasePrice"),
        ]
        + _owner_fields()
        + [_f("ownPos", TEXT, "Owner Position")]
        + _checks(
            ("statNonVet", "Non-Veteran"),
            ("statVet", "Veteran"),
            ("statVetD", "Veteran with Disability"),
            ("statVetSp", "Service-Disabled Veteran"),
            ("statND", "Status Not Disclosed"),
            ("male", "Male"),
            ("female", "Female"),
            ("raceAIAN", "American Indian or Alaska Native"),
            ("raceAsian", "Asian"),
            ("raceBAA", "Black or African American"),
            ("raceNHPI", "Native Hawaiian or Pacific Islander"),
            ("raceWhite", "White"),
            ("raceND", "Race Not Disclosed"),
            ("ethHisp", "Hispanic or Latino"),
            ("ethNot", "Not Hispanic or Latino"),
            ("ethND", "Ethnicity Not Disclosed"),
        )
        + _question_fields()
        + [
            _f("EquipAmt", NUM, "Equipment Amount", "equipmentAmount"),
            _f("purpEquip", TEXT, "Purpose Equipment"),
            _f("workCap", NUM, "Working Capital", "workingCapital"),
            _f("busAcq", NUM, "Business Acquisition", "businessAcquisition"),
            _f("purpOther1", TEXT, "Purpose Other 1", "loanPurpose"),
            _f("purpOther2", TEXT, "Purpose Other 2"),
            _f("purpInv", NUM, "Purpose Inventory", "inventory"),
            _f("debtRef", NUM, "Debt Refinance", "debtRefinance"),
        ]
    ),
)


SBA_413 = FormTemplate(
    name="SBA_413",
    title="SBA Form 413 - Personal Financial Statement",
    filename="SBAForm413.pdf",
    fields=tuple(
        _checks(
            ("disasterBusinessLoanApplication", "Disaster Business Loan Application"),
            ("womenOwnedSmallBusiness", "Women-Owned Small Business"),
            ("businessDevelopmentProgram8a", "8(a) Business Development"),
            ("loan7aOr504OrSuretyBonds", "7(a) / 504 / Surety Bonds"),
        )
        + [
            _f("name", TEXT, "Name", "applicantName", "fullName", required=True),
            _f("businessPhone", TEXT, "Business Phone", "businessPhoneNumber"),
            _f("homeAddress", TEXT, "Residence Address", "ownHome1"),
            _f("homePhone", TEXT, "Residence Phone", "phone"),
            _f("cityStateZipCode", TEXT, "City, State, & Zip Code", "cityStateZip"),
            _f("businessNameOfApplicantBorrower", TEXT, "Business Name of Applicant/Borrower", "businessName", required=True),
            _f("businessAddress", TEXT, "Business Address"),
        ]
        + _checks(
            ("businessTypeCorporation", "Corporation"),
            ("businessTypeSCorp", "S-Corp"),
            ("businessTypeLLC", "LLC"),
            ("businessTypePartnership", "Partnership"),
            ("businessTypeSoleProprietor", "Sole Proprietor"),
        )
        + [
            _f("informationCurrentAsOf", TEXT, "Information Current As Of", "applicationDate"),
            _f("wosbApplicantMarriedYes", BOOL, "WOSB Applicant Married: Yes"),
            _f("wosbApplicantMarriedNo", BOOL, "WOSB Applicant Married: No"),
        ]
        + [
            _f(name, NUM, label, *aliases)
            for name, label, aliases in (
                ("cashOnHandAndInBanks", "Cash on Hand & in Banks", ("cashOnHand", "availableCash")),
                ("savingsAccounts", "Savings Accounts", ()),
                ("iraOrOtherRetirementAccount", "IRA or Other Retirement Account", ("retirementAccounts",)),
                ("accountsAndNotesReceivable", "Accounts & Notes Receivable", ()),
                ("lifeInsuranceCashSurrenderValueOnly", "Life Insurance - Cash Surrender Value Only", ()),
                ("stocksAndBonds", "Stocks and Bonds", ()),
                ("realEstate", "Real Estate", ()),
                ("automobiles", "Automobiles", ()),
                ("otherPersonalProperty", "Other Personal Property", ()),
                ("otherAssets", "Other Assets", ()),
                ("totalAssets", "Total", ()),
                ("accountsPayable", "Accounts Payable", ()),
                ("notesPayableToBanksAndOthers", "Notes Payable to Banks and Others", ()),
                ("installmentAccountAuto", "Installment Account (Auto)", ()),
                ("installmentAccountMonthlyPaymentsAuto", "Installment Account Monthly Payments (Auto)", ()),
                ("installmentAccountOther", "Installment Account (Other)", ()),
                ("installmentAccountMonthlyPaymentsOther", "Installment Account Monthly Payments (Other)", ()),
                ("loansAgainstLifeInsurance", "Loan(s) Against Life Insurance", ()),
                ("mortgagesOnRealEstate", "Mortgages on Real Estate", ()),
                ("unpaidTaxes", "Unpaid Taxes", ()),
                ("otherLiabilities", "Other Liabilities", ()),
                ("totalLiabilities", "Total Liabilities", ()),
                ("netWorth", "Net Worth", ()),
                ("salary", "Salary", ("annualSalary",)),
                ("netInvestmentIncome", "Net Investment Income", ()),
                ("realEstateIncome", "Real Estate Income", ()),
                ("otherIncome", "Other Income", ()),
                ("asEndorserOrCoMaker", "As Endorser or Co-Maker", ()),
                ("legalClaimsAndJudgements", "Legal Claims & Judgments", ()),
                ("provisionForFederalIncomeTax", "Provision for Federal Income Tax", ()),
                ("otherSpecialDebt", "Other Special Debt", ()),
            )
        ]
        + [
            _f("descriptionOfOtherIncomeRow1", TEXT, "Description of Other Income", "otherIncomeDescription"),
            _group(
                "notesPayable",
                "Section 2. Notes Payable to Banks and Others",
                5,
                (
                    ("namesAndAddressesOfNoteholders", TEXT),
                    ("originalBalance", NUM),
                    ("currentBalance", NUM),
                    ("paymentAmount", NUM),
                    ("frequency", TEXT),
                    ("howSecuredOrEndorsedTypeOfCollateral", TEXT),
                ),
                "notes",
                "loans",
            ),
            _group(
                "stocksAndBondsDetails",
                "Section 3. Stocks and Bonds",
                4,
                (
                    ("numberOfShares", NUM),
                    ("nameOfSecurities", TEXT),
                    ("cost", NUM),
                    ("marketValueQuotationExchange", NUM),
                    ("dateOfQuotationExchange", TEXT),
                    ("totalValue", NUM),
                ),
                "securities",
            ),
            _group(
                "realEstateDetails",
                "Section 4. Real Estate Owned",
                3,
                (
                    ("typeOfRealEstate", TEXT),
                    ("address", TEXT),
                    ("datePurchased", TEXT),
                    ("originalCost", NUM),
                    ("presentMarketValue", NUM),
                    ("nameAndAddressOfMortgageHolder", TEXT),
                    ("mortgageAccountNumber", TEXT),
                    ("mortgageBalance", NUM),
                    ("amountOfPaymentPerMonthYear", NUM),
                    ("statusOfMortgage", TEXT),
                ),
                "properties",
            ),
            _f("section5OtherPersonalPropertyAndAssets", TEXT, "Section 5. Other Personal Property and Other Assets"),
            _f("section6UnpaidTaxes", TEXT, "Section 6. Unpaid Taxes"),
            _f("section7OtherLiabilities", TEXT, "Section 7. Other Liabilities"),
            _f("section8LifeInsuranceHeld", TEXT, "Section 8. Life Insurance Held"),
            _f("signature", TEXT, "Signature"),
            _f("date", TEXT, "Date", "signatureDate"),
            _f("printName", TEXT, "Print Name", "name"),
            _f("socialSecurityNo", TEXT, "Social Security No.", "ownerSSN", "ssn"),
            _f("signature2", TEXT, "Signature (2)"),
            _f("date2", TEXT, "Date (2)"),
            _f("printName2", TEXT, "Print Name (2)"),
            _f("socialSecurityNo2", TEXT, "Social Security No. (2)"),
        ]
    ),
)


PROGRAM_TEMPLATES: dict[str, tuple[str, ...]] = {
    "sba_7a": ("SBA_1919", "SBA_413"),
    "sba_express": ("SBA_1919",),
}


class FormRegistry:
    """Immutable set of templates plus the program -> required templates table."""

    def __init__(
        self,
        templates: Iterable[FormTemplate] = (SBA_1919, SBA_413),
        programs: dict[str, tuple[str, ...]] | None = None,
    ):
        self._templates: dict[str, FormTemplate] = {t.name: t for t in templates}
        self._programs = dict(programs if programs is not None else PROGRAM_TEMPLATES)
        for program, names in self._programs.items():
            missing = [n for n in names if n not in self._templates]
            if missing:
                raise ValueError(f"Program {program!r} references unknown templates: {', '.join(missing)}")

    def get(self, name: str) -> FormTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise KeyError(f"Unknown form template: {name}") from None

    def names(self) -> list[str]:
        return list(self._templates)

    def templates(self) -> list[FormTemplate]:
        return list(self._templates.values())

    def programs(self) -> list[str]:
        return list(self._programs)

    def templates_for_program(self, program_type: str) -> list[FormTemplate]:
        try:
            names = self._programs[program_type]
        except KeyError:
            raise KeyError(f"Unknown program type: {program_type}") from None
        return [self._templates[n] for n in names]


def entity_type_checkboxes(entity_type: str | None) -> dict[str, bool]:
    """Checkbox keys (both forms) set for an entity type; case-insensitive on the label."""
    if not entity_type:
        return {}
    wanted = entity_type.strip().casefold()
    for label, fields in ENTITY_TYPE_FIELDS.items():
        if label.casefold() == wanted:
            return {field: True for field in fields.values()}
    return {}
