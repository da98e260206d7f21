from kioskmap.etl import csv_parser


def test_parse_csv_line_handles_quotes_and_escapes():
    assert csv_parser.parse_csv_line('a,"b,c""d",e') == ["a", 'b,c"d', "e"]


def test_parse_csv_line_is_idempotent():
    line = ' 1 ,"Av. Mitre 1234, Avellaneda",  -34.67 ,'
    first = csv_parser.parse_csv_line(line)
    assert first == csv_parser.parse_csv_line(line)
    assert first == ["1", "Av. Mitre 1234, Avellaneda", "-34.67", ""]


def test_parse_csv_line_recovers_from_stray_quote():
    # The unmatched quote swallows the remaining delimiters instead of raising.
    assert csv_parser.parse_csv_line('a,b"c,d') == ["a", "bc,d"]


def test_parse_csv_line_strips_carriage_return():
    assert csv_parser.parse_csv_line("x,y\r") == ["x", "y"]


def test_parse_csv_maps_headers_and_passes_unknown_through():
    text = "ID,Paquete,Latitud,Longitud,Nueva Columna\n7,Kiosco Sol,-34.6,-58.4,extra\n"

    rows = csv_parser.parse_csv(text)

    assert rows == [
        {
            "id": "7",
            "package": "Kiosco Sol",
            "latitude": "-34.6",
            "longitude": "-58.4",
            "Nueva Columna": "extra",
        }
    ]


def test_parse_csv_rows_have_one_key_per_header_column():
    text = "ID,Paquete,Latitud,Longitud\n1,A\n\n   \n2,B,-34.1,-58.1,surplus\r\n"

    rows = csv_parser.parse_csv(text)

    assert len(rows) == 2
    assert all(len(row) == 4 for row in rows)
    assert rows[0] == {"id": "1", "package": "A", "latitude": "", "longitude": ""}
    assert rows[1]["longitude"] == "-58.1"


def test_parse_csv_accepts_custom_map_and_bom():
    rows = csv_parser.parse_csv("\ufeffLat,Lng\n1,2\n", column_map={"Lat": "latitude", "Lng": "longitude"})
    assert rows == [{"latitude": "1", "longitude": "2"}]


def test_parse_csv_empty_input():
    assert csv_parser.parse_csv("") == []
    assert csv_parser.parse_csv("ID,Paquete\n") == []


def test_parse_csv_splits_records_on_newline_only():
    text = (
        "ID,Observaciones,Latitud,Longitud\r\n"
        '1,"nota\u2028mas",-34.1,-58.1\r\n'
        '2,"x\x0cy",-34.2,-58.2\n'
        "3,a\x85b,-34.3,-58.3\n"
    )

    rows = csv_parser.parse_csv(text)

    assert [row["id"] for row in rows] == ["1", "2", "3"]
    assert rows[0]["observations"] == "nota\u2028mas"
    assert rows[1]["observations"] == "x\x0cy"
    assert [row["longitude"] for row in rows] == ["-58.1", "-58.2", "-58.3"]


def test_parse_csv_keeps_blank_and_repeated_headers_apart():
    rows = csv_parser.parse_csv("ID,,,Latitud,Latitud\n1,a,b,-34,-35\n")

    assert rows == [
        {"id": "1", "column_2": "a", "column_3": "b", "latitude": "-34", "latitude_2": "-35"}
    ]
