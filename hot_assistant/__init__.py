"""Hot backup and restore of MariaDB/MySQL through mariadb-backup."""
