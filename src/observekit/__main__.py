from observekit.cli import main

main()
