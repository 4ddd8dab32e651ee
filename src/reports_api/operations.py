"""
Endpoint descriptors.

One Operation per database-backed endpoint. Object names are the reporting
database's tables and set-returning routines.
"""
from src.reports_api.query_adapter import (
    Date,
    Int,
    NVarChar,
    Numeric,
    Operation,
    Param,
    Procedure,
    Query,
    VarChar,
    as_column,
    as_envelope,
    as_record,
    as_renamed,
    as_rows,
    as_status,
)

# =========================
# Users
# =========================

FIND_USER_BY_NAME = Operation(
    name="find_user_by_name",
    target=Query(
        "SELECT user_id, user_name, user_password, user_type, user_availability_status "
        "FROM tbl_usermaster WHERE user_name = %(username)s::varchar(50)"
    ),
    params=(Param("username", VarChar(50)),),
)

FIND_ACTIVE_USER_BY_ID = Operation(
    name="find_active_user_by_id",
    target=Query(
        "SELECT user_id, user_name, user_type, user_availability_status "
        "FROM tbl_usermaster WHERE user_id = %(user_id)s::integer AND user_availability_status = 'YES'"
    ),
    params=(Param("user_id", Int()),),
)

USER_EXISTS = Operation(
    name="user_exists",
    target=Query("SELECT user_name FROM tbl_usermaster WHERE user_name = %(user_name)s::varchar(50)"),
    params=(Param("user_name", VarChar(50)),),
)

CREATE_USER = Operation(
    name="create_user",
    target=Query(
        """
        INSERT INTO tbl_usermaster
            (user_name, user_password, user_type, user_availability_status, user_mobile, user_email)
        VALUES
            (%(user_name)s::varchar(50), %(user_password)s::varchar(100), %(user_type)s::varchar(20),
             %(user_availability_status)s::varchar(10), %(user_mobile)s::varchar(15), %(user_email)s::varchar(100))
        """
    ),
    params=(
        Param("user_name", VarChar(50)),
        Param("user_password", VarChar(100), source="password_hash"),
        Param("user_type", VarChar(20)),
        Param("user_availability_status", VarChar(10)),
        Param("user_mobile", VarChar(15), source="mobile"),
        Param("user_email", VarChar(100), source="email"),
    ),
    shape=as_status("User created successfully"),
)

LIST_USER_NAMES = Operation(
    name="list_user_names",
    target=Query("SELECT user_name FROM user_details_m_tbl ORDER BY user_name"),
    shape=as_column("user_name", "users"),
)

# =========================
# Lookups
# =========================

LIST_BRANCHES = Operation(
    name="list_branches",
    target=Query("SELECT br_name FROM gen_branchdetails_p_tbl ORDER BY br_name"),
    shape=as_column("br_name", "branches"),
)

LIST_SECTIONS = Operation(
    name="list_sections",
    target=Query("SELECT DISTINCT sch_section_name FROM gen_schememaster_p_tbl ORDER BY sch_section_name"),
    shape=as_column("sch_section_name", "sections"),
)

LIST_SCHEMES = Operation(
    name="list_schemes",
    target=Query(
        "SELECT sch_name FROM gen_schememaster_p_tbl "
        "WHERE sch_section_name = %(section)s::varchar(50) ORDER BY sch_name"
    ),
    params=(Param("section", VarChar(50)),),
    shape=as_column("sch_name", "schemes"),
)

REPORT_MENU = Operation(
    name="report_menu",
    target=Query(
        """
        SELECT mnu_id, mnu_caption, mnu_url, mnu_description, mnu_order, mnu_active
        FROM menu_report_tbl
        WHERE mnu_active = 1
        ORDER BY mnu_order ASC, mnu_caption ASC
        """
    ),
    shape=as_renamed(
        {
            "mnu_id": "id",
            "mnu_caption": "caption",
            "mnu_url": "url",
            "mnu_description": "description",
            "mnu_order": "order",
            "mnu_active": "active",
        },
        "menuItems",
    ),
)

# =========================
# Reports
# =========================

HIGH_VALUE_TRANSACTIONS = Operation(
    name="audithvtranrpt_sp",
    target=Procedure("audithvtranrpt_sp"),
    params=(
        Param("br_name", VarChar(10), source="branch_name"),
        Param("section", VarChar(10)),
        Param("scheme", VarChar(30)),
        Param("amount", Numeric(18, 2), source="min_amount"),
        Param("amount2", Numeric(18, 2), source="max_amount"),
        Param("frdate", Date(), source="from_date"),
        Param("todate", Date(), source="to_date"),
    ),
    shape=as_rows("rows"),
)

COMPLAINT_REGISTER = Operation(
    name="complaintregister_sp",
    target=Procedure("complaintregister_sp"),
)

USER_RIGHTS = Operation(
    name="audituserrightrpt_sp",
    target=Procedure("audituserrightrpt_sp"),
    params=(Param("userid", VarChar(100), source="user"),),
    shape=as_rows("rows"),
)

USER_RIGHT_TRANSFERS = Operation(
    name="audituserrighttranrpt_sp",
    target=Procedure("audituserrighttranrpt_sp"),
    params=(
        Param("username", VarChar(10), source="user"),
        Param("frdate", Date(), source="from_date"),
        Param("todate", Date(), source="to_date"),
    ),
    shape=as_rows("rows"),
)

# =========================
# Issues & documents
# =========================

INSERT_ISSUE = Operation(
    name="insert_issue",
    target=Query(
        """
        INSERT INTO tbl_issuemaster
            (cmp_code, issue_module, issue_description, issue_remarks, reported_by, reported_date, priority, due_date)
        VALUES
            (%(cmp_code)s, %(issue_module)s, %(issue_description)s, %(issue_remarks)s,
             %(reported_by)s, %(reported_date)s::date, %(priority)s, %(due_date)s::date)
        """
    ),
    params=(
        Param("cmp_code", VarChar(20)),
        Param("issue_module", VarChar(100)),
        Param("issue_description", NVarChar()),
        Param("issue_remarks", NVarChar()),
        Param("reported_by", VarChar(50)),
        Param("reported_date", Date()),
        Param("priority", VarChar(10)),
        Param("due_date", Date()),
    ),
    shape=as_status("Issue inserted successfully"),
)

INSERT_DOCUMENT = Operation(
    name="insert_document",
    target=Query(
        """
        INSERT INTO document_tbl (compcode, section, keyword, details, username)
        VALUES (%(compcode)s, %(section)s, %(keyword)s, %(details)s, %(username)s)
        """
    ),
    params=(
        Param("compcode", VarChar(50), source="comp_code"),
        Param("section", VarChar(50)),
        Param("keyword", VarChar(255)),
        Param("details", NVarChar()),
        Param("username", VarChar(50), source="user_name"),
    ),
    shape=as_status("Document saved successfully"),
)


def _keywords(rows, rowcount):
    keywords = [r.get("keyword") for r in rows]
    return {"success": True, "keywords": keywords, "count": len(keywords)}


SEARCH_KEYWORDS = Operation(
    name="search_keywords",
    target=Query(
        """
        SELECT keyword FROM document_tbl
        WHERE keyword IS NOT NULL AND keyword <> ''
          AND (%(search_term)s::varchar(255) IS NULL OR keyword LIKE %(search_term)s::varchar(255))
        ORDER BY keyword
        """
    ),
    params=(Param("search_term", VarChar(255), source="search_pattern"),),
    shape=_keywords,
)

GET_DOCUMENT = Operation(
    name="get_document",
    target=Query(
        "SELECT id, compcode, section, keyword, details, username FROM document_tbl WHERE id = %(id)s::integer"
    ),
    params=(Param("id", Int()),),
    shape=as_record("document", "Document not found"),
)

# =========================
# Member registrations
# =========================

LIST_PROGRAMME_NAMES = Operation(
    name="list_programme_names",
    target=Query(
        "SELECT DISTINCT programmename FROM timeslots_tbl WHERE programmename IS NOT NULL ORDER BY programmename"
    ),
    shape=as_column("programmename", "programmeNames"),
)

LIST_TIME_SLOTS = Operation(
    name="list_time_slots",
    target=Query("SELECT DISTINCT timeslots FROM timeslots_tbl WHERE timeslots IS NOT NULL ORDER BY timeslots"),
    shape=as_column("timeslots", "timeSlots"),
)

LIST_REGISTRATION_TIME_SLOTS = Operation(
    name="list_registration_time_slots",
    target=Query("SELECT timeslots FROM timeslots_tbl WHERE timeslots <> 'ALL' ORDER BY timeslots"),
    shape=as_column("timeslots", "timeSlots"),
)

REGISTERED_MEMBERS = Operation(
    name="regmembers_sp",
    target=Procedure("regmembers_sp"),
    params=(
        Param("param1", VarChar(50), source="programme_name"),
        Param("param2", VarChar(50), source="time_slots"),
    ),
    shape=as_envelope("Report data retrieved successfully"),
)

MEMBERS_REPORT = Operation(
    name="regmembersreport_sp",
    target=Procedure("regmembersreport_sp"),
    params=(
        Param("param1", VarChar(50), source="programme_name"),
        Param("param2", VarChar(50), source="time_slots"),
        Param("param3", Int(), source="option_value"),
    ),
    shape=as_envelope("Report generated successfully"),
)

UPDATE_ATTEND_MEMBER = Operation(
    name="updateattendmember_sp",
    target=Procedure("updateattendmember_sp"),
    params=(
        Param("phone", VarChar(20)),
        Param("atnpersons", VarChar(10), source="atn_persons"),
    ),
    shape=as_envelope("Attendance updated successfully"),
)

REGISTER_MEMBER = Operation(
    name="insertupdate_regmaster_sp",
    target=Procedure("insertupdate_regmaster_sp"),
    params=(
        Param("name", VarChar(100)),
        Param("phone", VarChar(20)),
        Param("regpersons", Int(), source="no_of_person"),
        Param("timeslot", VarChar(50), source="time_slot"),
    ),
    shape=as_status("Registration successful!"),
)
