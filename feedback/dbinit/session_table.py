import mysql.connector
from mysql.connector import Error

from feedback.config import load_config
from feedback.monitoring.monitoring import log_error, log_info

SESSION_COLUMNS = {
    "id": "VARCHAR(16) PRIMARY KEY",
    "name": "VARCHAR(255)",
    "title": "VARCHAR(255) NOT NULL",
    "date": "DATE NULL",
    "multipleDates": "TINYINT(1) DEFAULT 0",
    "organisers": "JSON NOT NULL",
    "questions": "JSON",
    "certificate": "TINYINT(1) DEFAULT 0",
    "subsessions": "JSON",
    "isSubsession": "TINYINT(1) DEFAULT 0",
    "attendance": "TINYINT(1) DEFAULT 0",
    "closed": "TINYINT(1) DEFAULT 0",
    "datetime": "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
}

SUBMISSION_COLUMNS = {
    "submission_id": "INT AUTO_INCREMENT PRIMARY KEY",
    "id": "VARCHAR(16) NOT NULL",
    "positive": "TEXT",
    "negative": "TEXT",
    "questions": "JSON",
    "score": "INT NULL",
    "submitted_at": "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
}

ATTENDANCE_COLUMNS = {
    "attendance_id": "INT AUTO_INCREMENT PRIMARY KEY",
    "id": "VARCHAR(16) NOT NULL",
    "name": "VARCHAR(255) NOT NULL",
    "region": "VARCHAR(255)",
    "organisation": "VARCHAR(255)",
    "datetime": "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
}


def create_or_update_table(connection, table_name, expected_columns, indexes=None):
    cursor = connection.cursor()
    try:
        cursor.execute("SHOW TABLES LIKE %s", (table_name,))
        table_exists = cursor.fetchone()

        if not table_exists:
            columns_sql = ",\n".join([f"{col} {typ}" for col, typ in expected_columns.items()])
            index_sql = "".join(f", INDEX ({col})" for col in (indexes or []))
            cursor.execute(f"CREATE TABLE {table_name} (\n{columns_sql}{index_sql}\n)")
            log_info(f"Table '{table_name}' created")
        else:
            cursor.execute(f"SHOW COLUMNS FROM {table_name}")
            existing_columns = [row[0] for row in cursor.fetchall()]
            for col, col_type in expected_columns.items():
                if col not in existing_columns:
                    cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {col} {col_type}")
                    log_info(f"Column '{col}' added to '{table_name}'")

        connection.commit()
    except Error as e:
        log_error(f"Error creating or altering table '{table_name}': {e}")
        raise
    finally:
        cursor.close()


def create_tables(connection, config):
    create_or_update_table(connection, config.sessions_table, SESSION_COLUMNS)
    create_or_update_table(connection, config.submissions_table, SUBMISSION_COLUMNS, indexes=["id"])
    create_or_update_table(connection, config.attendance_table, ATTENDANCE_COLUMNS, indexes=["id"])


def main():
    config = load_config()
    connection = mysql.connector.connect(**config.db)
    try:
        create_tables(connection, config)
    finally:
        connection.close()
        log_info("Database connection closed")


if __name__ == "__main__":
    main()
