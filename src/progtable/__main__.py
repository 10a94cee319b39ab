from progtable.cli import main

main()
