"""Generate sample employee workbooks for testing the upload pipeline."""
import random
import sys
from datetime import date, timedelta

from openpyxl import Workbook

HEADERS = ["firstname", "lastname", "gender", "country", "age", "date"]


def random_row(invalid: bool) -> list:
    """One employee row; ``invalid`` rows break exactly one field constraint."""
    firstnames = ["John", "Jane", "Mike", "Sara", "Ali", "Mei", "Omar", "Lena", "Ivan", "Rosa"]
    lastnames = ["Doe", "Smith", "Johnson", "Tan", "Khan", "Silva", "Novak", "Berg", "Ito", "Diaz"]
    genders = ["Male", "Female"]
    countries = ["USA", "Canada", "UK", "Germany", "Japan", "Brazil", "India", "Indonesia"]

    row = [
        random.choice(firstnames),
        random.choice(lastnames),
        random.choice(genders),
        random.choice(countries),
        random.randint(18, 65),
        (date(2020, 1, 1) + timedelta(days=random.randint(0, 1800))).isoformat(),
    ]

    if invalid:
        field = random.randrange(4)
        if field == 0:
            row[0] = "Maximilianus"  # over 10 characters
        elif field == 1:
            row[3] = "The Republic of Nowhere"  # over 20 characters
        elif field == 2:
            row[4] = random.choice([150, -3, "abc"])
        else:
            row[5] = "not-a-date"
    return row


def generate_xlsx(num_rows: int, output_file: str, invalid_ratio: float = 0.0) -> None:
    """
    Generate a workbook with random employee data.

    Args:
        num_rows: Number of data rows to generate
        output_file: Output .xlsx path
        invalid_ratio: Share of rows (0.0 to 1.0) that fail validation
    """
    workbook = Workbook(write_only=True)
    worksheet = workbook.create_sheet("Employees")
    worksheet.append(HEADERS)

    invalid_count = 0
    for i in range(num_rows):
        invalid = random.random() < invalid_ratio
        invalid_count += invalid
        worksheet.append(random_row(invalid))

        # Print progress every 10,000 rows
        if (i + 1) % 10000 == 0:
            print(f"Generated {i+1:,} rows...")

    workbook.save(output_file)
    print(
        f"✅ Successfully generated {num_rows:,} employees "
        f"({invalid_count:,} invalid) in {output_file}"
    )


def main():
    """Main function to parse arguments and generate the workbook."""
    if len(sys.argv) < 2:
        print("Usage: python generate_xlsx.py <num_rows> [output_file] [invalid_ratio]")
        print("Example: python generate_xlsx.py 50000 sample_50k.xlsx 0.05")
        sys.exit(1)

    num_rows = int(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else f"sample_{num_rows}.xlsx"
    invalid_ratio = float(sys.argv[3]) if len(sys.argv) > 3 else 0.0

    print(f"Generating workbook with {num_rows:,} rows...")
    generate_xlsx(num_rows, output_file, invalid_ratio)


if __name__ == "__main__":
    main()
